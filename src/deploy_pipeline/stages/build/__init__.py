from .builder import (
    AnonymousCredentials,
    CredentialProvider,
    EnvCredentialProvider,
    ImageBuilder,
    RegistryAuth,
    registry_host,
)
from .docker import DockerCliBuilder
from .runner import run_build
from .stage import stage_build

__all__ = [
    "AnonymousCredentials",
    "CredentialProvider",
    "EnvCredentialProvider",
    "ImageBuilder",
    "RegistryAuth",
    "registry_host",
    "DockerCliBuilder",
    "run_build",
    "stage_build",
]
