"""Optional Logfire integration for job tracing."""
from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

logger = logging.getLogger("backstream")

_logfire = None
_configured = False


def _load_logfire():
    global _logfire
    if _logfire is not None:
        return _logfire
    try:
        import logfire
    except ImportError:
        _logfire = False
        return _logfire
    _logfire = logfire
    return _logfire


def _env_truthy(value: Optional[str]) -> bool:
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def enabled() -> bool:
    logfire = _load_logfire()
    if not logfire:
        return False
    flag = os.getenv("BACKSTREAM_LOGFIRE")
    if flag is not None:
        return _env_truthy(flag)
    # Only trace when a project token is configured.
    return os.getenv("LOGFIRE_TOKEN") is not None


def configure() -> bool:
    logfire = _load_logfire()
    if not logfire or not enabled():
        return False
    global _configured
    if not _configured:
        try:
            logfire.configure(service_name="backstream", console=False)
        except Exception:
            logger.exception("Logfire configuration failed")
            return False
        _configured = True
        # Upstream requests show up as child spans of the job span.
        if _env_truthy(os.getenv("BACKSTREAM_LOGFIRE_INSTRUMENT_HTTPX", "1")):
            try:
                logfire.instrument_httpx()
            except Exception:
                logger.warning("Logfire httpx instrumentation unavailable")
    return True


@contextmanager
def span(name: str, **attrs: Any) -> Iterator[None]:
    if not configure():
        yield
        return
    with _logfire.span(name, **attrs):
        yield
