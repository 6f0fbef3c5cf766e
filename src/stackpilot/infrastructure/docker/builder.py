"""Container image builder implementations."""

from __future__ import annotations

import asyncio

import structlog

from stackpilot.domain.ports.services import ImageBuilder


logger = structlog.get_logger(__name__)


class DockerImageBuilder(ImageBuilder):
    """Shells out to the docker CLI."""

    def __init__(self, binary: str = "docker", dockerfile: str = "Dockerfile") -> None:
        self._binary = binary
        self._dockerfile = dockerfile

    async def build(self, uri: str, tag: str, dockerfile_dir: str) -> None:
        await self._run(
            "build",
            "-t", f"{uri}:{tag}",
            "-f", f"{dockerfile_dir.rstrip('/')}/{self._dockerfile}",
            dockerfile_dir,
        )
        logger.info("image_built", uri=uri, tag=tag)

    async def login(self, uri: str, username: str, password: str) -> None:
        await self._run("login", "-u", username, "--password-stdin", uri, stdin=password)
        logger.info("registry_login_succeeded", uri=uri)

    async def push(self, uri: str, tag: str) -> None:
        await self._run("push", f"{uri}:{tag}")
        logger.info("image_pushed", uri=uri, tag=tag)

    async def _run(self, *args: str, stdin: str | None = None) -> str:
        process = await asyncio.create_subprocess_exec(
            self._binary,
            *args,
            stdin=asyncio.subprocess.PIPE if stdin is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate(
            stdin.encode("utf-8") if stdin is not None else None
        )
        if process.returncode != 0:
            raise ImageBuildError(args[0], process.returncode or -1, stderr.decode("utf-8").strip())
        return stdout.decode("utf-8")


class SimulatedImageBuilder(ImageBuilder):
    """Records build, login and push calls instead of running docker."""

    def __init__(self, fail_on: str | None = None) -> None:
        self._fail_on = fail_on
        self.built: list[str] = []
        self.logins: list[str] = []
        self.pushed: list[str] = []

    async def build(self, uri: str, tag: str, dockerfile_dir: str) -> None:
        self._maybe_fail("build")
        self.built.append(f"{uri}:{tag}")
        logger.info("simulated_image_built", uri=uri, tag=tag, context_dir=dockerfile_dir)

    async def login(self, uri: str, username: str, password: str) -> None:
        self._maybe_fail("login")
        self.logins.append(uri)

    async def push(self, uri: str, tag: str) -> None:
        self._maybe_fail("push")
        self.pushed.append(f"{uri}:{tag}")
        logger.info("simulated_image_pushed", uri=uri, tag=tag)

    def _maybe_fail(self, command: str) -> None:
        if self._fail_on == command:
            raise ImageBuildError(command, 1, "simulated failure")


class ImageBuildError(Exception):
    """Raised when a docker command exits non-zero."""

    def __init__(self, command: str, returncode: int, stderr: str) -> None:
        super().__init__(f"docker {command} exited with {returncode}: {stderr}")
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
