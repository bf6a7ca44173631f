"""Source sync via ``git pull`` in the project's working copy."""

from __future__ import annotations

import asyncio
import logging

from labelflow.state.models import resolve_repo_path

logger = logging.getLogger(__name__)


class GitSourceSync:
    """Runs ``git pull`` with a hard timeout. Non-zero exit raises RuntimeError."""

    def __init__(self, *, timeout_seconds: float = 30.0, git_binary: str = "git") -> None:
        self.timeout_seconds = timeout_seconds
        self.git_binary = git_binary

    async def sync(self, repo_path: str) -> None:
        cwd = resolve_repo_path(repo_path)
        process = await asyncio.create_subprocess_exec(
            self.git_binary,
            "pull",
            cwd=str(cwd),
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout_seconds)
        except TimeoutError:
            process.kill()
            await process.wait()
            raise
        if process.returncode != 0:
            raise RuntimeError(
                f"git pull failed in {cwd} (exit={process.returncode}): "
                f"{stderr.decode('utf-8', errors='replace').strip()}",
            )
        logger.debug("git pull ok in %s", cwd)
