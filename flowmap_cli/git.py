"""Git access for export and hydration.

Every call runs ``git`` in a worker thread so that historical file
fetches for different files can run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import re
import subprocess
from pathlib import Path
from typing import Optional, Sequence

logger = logging.getLogger(__name__)


class GitError(RuntimeError):
    """Raised when a required git command fails."""


def normalize_remote(url: str) -> str:
    """Reduce a remote URL to ``host/owner/name``.

    ``git@github.com:acme/app.git`` and ``https://github.com/acme/app``
    both become ``github.com/acme/app``.
    """
    cleaned = url.strip()
    cleaned = re.sub(r"^git@", "", cleaned)
    cleaned = re.sub(r"^ssh://", "", cleaned)
    cleaned = re.sub(r"^https?://", "", cleaned)
    cleaned = re.sub(r"\.git$", "", cleaned)
    return cleaned.replace(":", "/", 1)


class GitClient:
    """Runs git commands inside one working tree."""

    def __init__(self, repo_root: Path) -> None:
        self.repo_root = Path(repo_root)

    async def _run(self, args: Sequence[str]) -> str:
        try:
            result = await asyncio.to_thread(
                subprocess.run,
                ["git", *args],
                cwd=str(self.repo_root),
                capture_output=True,
            )
        except OSError as exc:
            raise GitError(f"Could not run git: {exc}") from exc

        if result.returncode != 0:
            message = result.stderr.decode("utf-8", errors="replace").strip()
            raise GitError(f"git {' '.join(args)} failed: {message}")
        return result.stdout.decode("utf-8", errors="replace")

    async def get_head_commit(self) -> str:
        """Return the full hash of HEAD.

        Raises:
            GitError: outside a repository or before the first commit.
        """
        return (await self._run(["rev-parse", "HEAD"])).strip()

    async def get_file_at_revision(self, commit: str, relative_path: str) -> Optional[str]:
        try:
            return await self._run(["show", f"{commit}:{relative_path}"])
        except GitError as exc:
            logger.debug("No content for %s at %s: %s", relative_path, commit, exc)
            return None

    async def get_repo_id(self) -> str:
        try:
            remote = (await self._run(["remote", "get-url", "origin"])).strip()
        except GitError:
            remote = ""
        if remote:
            return normalize_remote(remote)
        return f"local/{self.repo_root.resolve().name}"


class WorkspaceContentLoader:
    """Content loader backed by the working tree and its git history."""

    def __init__(self, repo_root: Path, git: Optional[GitClient] = None) -> None:
        self.repo_root = Path(repo_root)
        self.git = git or GitClient(self.repo_root)

    async def get_file_at_revision(self, commit: str, relative_path: str) -> Optional[str]:
        return await self.git.get_file_at_revision(commit, relative_path)

    async def get_current_file_content(self, relative_path: str) -> Optional[str]:
        path = self.repo_root / relative_path
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            logger.debug("Current content unavailable for %s: %s", relative_path, exc)
            return None
