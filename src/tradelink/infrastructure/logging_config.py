"""Structlog configuration for the marketplace.

Every event carries the service, version and environment. Request-scoped
context (correlation id, the authenticated user and role) is bound through
contextvars by the HTTP middleware, so service code only logs its own
domain fields (``order_id``, ``dispute_id``, ``payout_id`` ...).

Payout destinations and gateway credentials are masked before rendering.
"""

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from structlog.types import EventDict, Processor

from tradelink import __version__
from tradelink.models.config import get_settings

SERVICE_NAME = "tradelink-marketplace"

# Keys whose values never reach the log output
SENSITIVE_KEYS = frozenset({"account_number", "paypal_email", "api_key", "authorization", "token"})
MASK = "***"

_environment = "development"


def add_environment(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["environment"] = _environment
    return event_dict


def add_service_info(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    event_dict["service"] = SERVICE_NAME
    event_dict["version"] = __version__
    return event_dict


def _mask(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: MASK if k in SENSITIVE_KEYS else _mask(v) for k, v in value.items()}
    return value


def mask_sensitive_fields(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask bank, PayPal and credential fields, including inside nested dicts."""
    for key, value in list(event_dict.items()):
        if key in SENSITIVE_KEYS:
            event_dict[key] = MASK
        elif isinstance(value, dict):
            event_dict[key] = _mask(value)
    return event_dict


def configure_structlog(environment: str | None = None) -> None:
    """Configure structlog for ``environment`` (defaults to ``Settings.environment``).

    Production renders JSON lines; anything else uses the colored console renderer.
    """
    global _environment
    _environment = environment or get_settings().environment
    is_production = _environment == "production"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_environment,
        add_service_info,
        mask_sensitive_fields,
    ]

    if is_production:
        renderer: list[Processor] = [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        renderer = [structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=[*shared_processors, *renderer],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=logging.INFO if is_production else logging.DEBUG,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def bind_actor(user_id: int, role: str) -> None:
    """Attach the authenticated caller to every event logged for this request."""
    structlog.contextvars.bind_contextvars(user_id=user_id, role=role)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


@contextmanager
def bound_context(**kwargs: Any) -> Iterator[None]:
    """Bind ``kwargs`` for the duration of a block, e.g. one payout in a batch."""
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


configure_structlog()
