from __future__ import annotations

from deploy_pipeline.core import ILogger, get_logger
from deploy_pipeline.core.logging import redact_secrets


def test_secrets_are_redacted_before_rendering() -> None:
    event = {
        "event": "docker.login",
        "registry": "registry.example.com",
        "password": "hunter2",
        "Authorization": "Bearer abc",
        "token": "2026-10-18T10:00:00Z",
        "secret": None,
    }
    out = redact_secrets(None, "info", dict(event))

    assert out["password"] == "***"
    assert out["Authorization"] == "***"
    # restart tokens are not credentials
    assert out["token"] == event["token"]
    assert out["secret"] is None
    assert out["registry"] == "registry.example.com"


def test_logger_satisfies_protocol() -> None:
    log = get_logger()
    assert isinstance(log.bind(stage="deploy"), ILogger)
