"""Image tag derivation from the source checkout."""

from __future__ import annotations

import asyncio

import structlog

from stackpilot.domain.ports.services import SourceVersionResolver, VersionResolutionError


logger = structlog.get_logger(__name__)


class GitVersionResolver(SourceVersionResolver):
    """Tags images with ``git describe --always`` run in the source directory."""

    def __init__(self, binary: str = "git") -> None:
        self._binary = binary

    async def version_tag(self, source_dir: str) -> str:
        try:
            process = await asyncio.create_subprocess_exec(
                self._binary,
                "describe",
                "--always",
                cwd=source_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise VersionResolutionError(source_dir, str(e)) from e
        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            raise VersionResolutionError(source_dir, stderr.decode("utf-8").strip())
        tag = stdout.decode("utf-8").strip()
        if not tag:
            raise VersionResolutionError(source_dir, "git describe returned nothing")
        logger.info("image_tag_derived", source_dir=source_dir, tag=tag)
        return tag


class StaticVersionResolver(SourceVersionResolver):
    """Returns a fixed tag; with no tag it behaves like a directory outside git."""

    def __init__(self, tag: str | None = "simulated") -> None:
        self._tag = tag
        self.resolved: list[str] = []

    async def version_tag(self, source_dir: str) -> str:
        if self._tag is None:
            raise VersionResolutionError(source_dir, "not a git repository")
        self.resolved.append(source_dir)
        return self._tag
