"""Repository setup for ticket workspaces."""

from pathlib import Path

from loopengine.git.runner import GitResult, run_git


def init_repo(path: Path) -> GitResult:
    """Run `git init` in an existing directory.

    Re-running in an existing repository is harmless (git reinitializes).
    """
    return run_git(["init"], path)


def is_git_repo(path: Path) -> bool:
    """Check whether path is inside a git work tree."""
    result = run_git(["rev-parse", "--is-inside-work-tree"], path)
    return result.success and result.stdout.strip() == "true"
