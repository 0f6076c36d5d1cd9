from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol

from pydantic import SecretStr

from deploy_pipeline.core import CredentialError, Settings
from deploy_pipeline.pipeline.types import ArtifactRef

DEFAULT_REGISTRY = "docker.io"


def registry_host(repository: str) -> str:
    """
    Registry host of an image repository, following docker's rules: the first
    path component is a host only if it looks like one.
    """
    first, sep, _ = repository.partition("/")
    if sep and ("." in first or ":" in first or first == "localhost"):
        return first
    return DEFAULT_REGISTRY


@dataclass(frozen=True, slots=True)
class RegistryAuth:
    """Opaque registry credentials; only the image builder looks inside."""

    registry: str
    username: str
    password: SecretStr

    def __repr__(self) -> str:
        return f"RegistryAuth(registry={self.registry!r}, username=***)"


class CredentialProvider(Protocol):
    def registry_auth(self, registry: str) -> Optional[RegistryAuth]:
        """
        Credentials for `registry`, or None for anonymous access.

        Raises CredentialError when acquisition fails.
        """
        ...


class ImageBuilder(Protocol):
    def build(self, *, context: Path, dockerfile: Path, target: ArtifactRef) -> None:
        """Raises BuildFailed."""
        ...

    def push(self, *, target: ArtifactRef, auth: Optional[RegistryAuth]) -> ArtifactRef:
        """Publish `target`; returns it with the registry digest when known.

        Raises PublishFailed.
        """
        ...


class AnonymousCredentials:
    def registry_auth(self, registry: str) -> Optional[RegistryAuth]:
        return None


class EnvCredentialProvider:
    """
    Registry credentials from settings (DEPLOY_PIPELINE_REGISTRY_USERNAME /
    DEPLOY_PIPELINE_REGISTRY_PASSWORD). Missing or partial credentials are an
    error.
    """

    def __init__(self, settings: Settings) -> None:
        self._username = settings.registry_username
        self._password = settings.registry_password

    def registry_auth(self, registry: str) -> Optional[RegistryAuth]:
        if not self._username:
            raise CredentialError(f"No registry username configured for {registry}")
        if self._password is None or not self._password.get_secret_value():
            raise CredentialError(f"No registry password configured for {registry}")
        return RegistryAuth(
            registry=registry, username=self._username, password=self._password
        )
