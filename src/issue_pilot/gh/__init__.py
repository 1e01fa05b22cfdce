"""gh command-line wrapper."""

from issue_pilot.gh.client import GhClient, GhCommandError

__all__ = ["GhClient", "GhCommandError"]
