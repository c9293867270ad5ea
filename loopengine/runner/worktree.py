"""
Workspace provisioning for tickets.

Each ticket gets its own directory under a user-chosen base path:

  <worktree_base_path>/<slug-of-title>/
    .git/        fresh repository (git init)
    README.md    manifest describing the originating ticket

The caller records the returned path on the ticket.
"""

import logging
import re
from pathlib import Path

from loopengine.git import init_repo
from loopengine.lib.constants import MANIFEST_FILE, MAX_SLUG_LENGTH
from loopengine.tickets.models import Ticket

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r'[^a-z0-9]+')


class ProvisioningError(Exception):
    """Workspace could not be created."""
    pass


def slugify(title: str, max_length: int = MAX_SLUG_LENGTH) -> str:
    """Convert a title to a filesystem-safe directory name.

    Lowercase, runs of non-alphanumerics become one hyphen, no leading or
    trailing hyphens, at most max_length characters. May return "".

    >>> slugify("Fix login bug 😀!!")
    'fix-login-bug'
    """
    slug = _NON_ALNUM.sub('-', title.lower()).strip('-')
    return slug[:max_length].rstrip('-')


def build_manifest(ticket: Ticket) -> str:
    """Render the workspace manifest for a ticket."""
    return "\n".join([
        f"# {ticket.title}",
        "",
        ticket.description,
        "",
        "---",
        f"Ticket ID: {ticket.id}",
        f"Type: {ticket.type.value}",
        f"Priority: {ticket.priority.value}",
    ])


class WorktreeProvisioner:
    """Creates the per-ticket workspace directory."""

    def __init__(self, manifest_file: str = MANIFEST_FILE):
        self.manifest_file = manifest_file

    def workspace_path(self, ticket: Ticket) -> Path:
        """Derive the workspace path without touching the filesystem.

        Raises:
            ProvisioningError: If the base path is unset or the slug is empty
        """
        if not ticket.worktree_base_path:
            raise ProvisioningError(f"Ticket '{ticket.id}' has no worktree base path set")

        slug = slugify(ticket.title)
        if not slug:
            raise ProvisioningError(f"Ticket title '{ticket.title}' produces an empty slug")

        return (Path(ticket.worktree_base_path).expanduser() / slug).resolve()

    def provision(self, ticket: Ticket) -> Path:
        """Create the workspace, initialize git, and write the manifest.

        Returns:
            Absolute path of the workspace

        Raises:
            ProvisioningError: On any failure; nothing is swallowed
        """
        worktree_path = self.workspace_path(ticket)

        try:
            worktree_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ProvisioningError(f"Could not create {worktree_path}: {e}") from e

        result = init_repo(worktree_path)
        if not result.success:
            logger.error(f"[WORKTREE] git init failed in {worktree_path}: {result.stderr.strip()}")
            raise ProvisioningError(
                f"git init failed in {worktree_path}: {result.stderr.strip() or f'exit {result.returncode}'}"
            )
        logger.info(f"[WORKTREE] git init in {worktree_path}")

        try:
            (worktree_path / self.manifest_file).write_text(build_manifest(ticket), encoding="utf-8")
        except OSError as e:
            raise ProvisioningError(f"Could not write manifest in {worktree_path}: {e}") from e

        logger.info(f"[WORKTREE] {ticket.id}: workspace ready at {worktree_path}")
        return worktree_path
