from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

LogFormat = Literal["json", "console"]

DEFAULT_IMAGE_TAG = "latest"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DEPLOY_PIPELINE_",
        env_file=".env",
        extra="ignore",
    )

    repo_path: Path = Field(default=Path("."))
    project_file: Optional[Path] = None
    run_root: Path = Field(default=Path("_runs"))
    log_level: str = Field(default="INFO")
    log_format: LogFormat = Field(default="console")

    # registry
    image_repository: Optional[str] = None
    image_tag: str = Field(default=DEFAULT_IMAGE_TAG)
    registry_username: Optional[str] = None
    registry_password: Optional[SecretStr] = None

    # cluster
    kube_context: Optional[str] = None
    kubeconfig: Optional[Path] = None
    kubectl_timeout_s: float = Field(default=60.0, gt=0)

    # rollout verification
    poll_interval_s: float = Field(default=5.0, gt=0)
    rollout_deadline_s: float = Field(default=300.0, gt=0)

    # per-workload run serialization
    lock_wait_s: float = Field(default=0.0, ge=0)


@lru_cache(maxsize=1)
def load_settings() -> Settings:
    return Settings()
