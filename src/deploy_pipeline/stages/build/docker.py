from __future__ import annotations

import re
import subprocess
from pathlib import Path
from typing import Optional

import structlog

from deploy_pipeline.core import BuildFailed, PublishFailed, run_command
from deploy_pipeline.pipeline.types import ArtifactRef

from .builder import RegistryAuth

log = structlog.get_logger(__name__)

_DIGEST_RE = re.compile(r"digest:\s*(sha256:[0-9a-f]{64})")


def parse_push_digest(output: str) -> Optional[str]:
    m = _DIGEST_RE.search(output)
    return m.group(1) if m else None


class DockerCliBuilder:
    """
    ImageBuilder backed by the `docker` CLI.

    Build errors become BuildFailed; login and push errors become
    PublishFailed. Nothing is retried.
    """

    def __init__(
        self,
        *,
        docker_bin: str = "docker",
        build_timeout_s: float | None = 1800.0,
        push_timeout_s: float | None = 600.0,
    ) -> None:
        self.docker_bin = docker_bin
        self.build_timeout_s = build_timeout_s
        self.push_timeout_s = push_timeout_s

    def build(self, *, context: Path, dockerfile: Path, target: ArtifactRef) -> None:
        context = Path(context)
        dockerfile = Path(dockerfile)
        if not context.is_dir():
            raise BuildFailed(f"Build context is not a directory: {context}")
        if not dockerfile.is_file():
            raise BuildFailed(f"Dockerfile not found: {dockerfile}")

        args = [
            self.docker_bin,
            "build",
            "--file",
            str(dockerfile),
            "--tag",
            target.reference,
            str(context),
        ]
        try:
            res = run_command(args, timeout_s=self.build_timeout_s)
        except FileNotFoundError as exc:
            raise BuildFailed(f"{self.docker_bin} not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise BuildFailed(
                f"docker build timed out after {self.build_timeout_s}s"
            ) from exc

        if not res.ok:
            raise BuildFailed(
                f"docker build exited {res.returncode}: {res.output_tail()}"
            )
        log.info("docker.built", image=target.reference)

    def _login(self, auth: RegistryAuth) -> None:
        args = [
            self.docker_bin,
            "login",
            auth.registry,
            "--username",
            auth.username,
            "--password-stdin",
        ]
        try:
            res = run_command(
                args,
                input_text=auth.password.get_secret_value(),
                timeout_s=self.push_timeout_s,
            )
        except FileNotFoundError as exc:
            raise PublishFailed(f"{self.docker_bin} not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise PublishFailed(f"docker login to {auth.registry} timed out") from exc

        if not res.ok:
            raise PublishFailed(
                f"docker login to {auth.registry} failed: {res.output_tail()}"
            )

    def push(self, *, target: ArtifactRef, auth: Optional[RegistryAuth]) -> ArtifactRef:
        if auth is not None:
            self._login(auth)

        try:
            res = run_command(
                [self.docker_bin, "push", target.reference],
                timeout_s=self.push_timeout_s,
            )
        except FileNotFoundError as exc:
            raise PublishFailed(f"{self.docker_bin} not found on PATH") from exc
        except subprocess.TimeoutExpired as exc:
            raise PublishFailed(
                f"docker push timed out after {self.push_timeout_s}s"
            ) from exc

        if not res.ok:
            raise PublishFailed(
                f"docker push {target.reference} exited {res.returncode}: "
                f"{res.output_tail()}"
            )

        digest = parse_push_digest(res.stdout)
        log.info("docker.pushed", image=target.reference, digest=digest)
        return ArtifactRef(repository=target.repository, tag=target.tag, digest=digest)
