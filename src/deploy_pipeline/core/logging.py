from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping, Protocol, runtime_checkable

import structlog
from rich.logging import RichHandler
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars

_CONFIGURED = False

# Event keys whose values never reach a log sink.
SECRET_KEYS = frozenset({"password", "registry_password", "secret", "authorization"})


@runtime_checkable
class ILogger(Protocol):
    def debug(self, event: str, **kw: Any) -> Any: ...
    def info(self, event: str, **kw: Any) -> Any: ...
    def warning(self, event: str, **kw: Any) -> Any: ...
    def error(self, event: str, **kw: Any) -> Any: ...
    def exception(self, event: str, **kw: Any) -> Any: ...
    def bind(self, **kw: Any) -> "ILogger": ...


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in list(event_dict):
        if key.lower() in SECRET_KEYS and event_dict[key] is not None:
            event_dict[key] = "***"
    return event_dict


def _shared_processors() -> list[Any]:
    return [
        merge_contextvars,
        redact_secrets,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def configure_logging(
    *, level: str = "INFO", fmt: str = "console", force: bool = False
) -> None:
    """
    Configure structlog on top of stdlib logging, once per process.

    console: rich handler, key=value rendering (humans, CI logs).
    json:    one JSON object per line on stdout (log shippers).
    """
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level.upper())

    handler: logging.Handler
    if fmt == "console":
        handler = RichHandler(
            rich_tracebacks=True,
            markup=False,
            show_time=False,
            show_path=False,
        )
        processors = [
            *_shared_processors(),
            structlog.processors.KeyValueRenderer(
                sort_keys=True, key_order=["event", "stage"], drop_missing=True
            ),
        ]
    else:
        handler = logging.StreamHandler(stream=sys.stdout)
        processors = [*_shared_processors(), structlog.processors.JSONRenderer()]

    handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level.upper())
    root.addHandler(handler)

    # git and urllib3 are chatty at DEBUG
    for noisy in ("git", "urllib3"):
        logging.getLogger(noisy).setLevel(max(logging.INFO, root.level))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level.upper()),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _CONFIGURED = True


def get_logger(name: str = "deploy_pipeline") -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind(**values: Any) -> None:
    """Attach values (run_id, command) to every log line of this context."""
    bind_contextvars(**values)


def clear_bindings() -> None:
    clear_contextvars()
