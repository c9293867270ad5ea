"""Git operations for ticket workspaces.

Functions returning GitResult: caller must check .success before using output.
Functions returning bool: True on success/condition met, False otherwise.
"""

from loopengine.git.runner import GitResult, run_git
from loopengine.git.repo import init_repo, is_git_repo

__all__ = [
    "GitResult",
    "run_git",
    "init_repo",
    "is_git_repo",
]
