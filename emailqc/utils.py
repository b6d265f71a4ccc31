"""Small shared helpers: logging setup and error descriptions."""

from __future__ import annotations

import json
import logging
import sys
from typing import Any

import httpx

from emailqc.config import settings

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging(logger_name: str = "emailqc") -> logging.Logger:
    """Install a single stdout handler on the root logger and return *logger_name*.

    Safe to call repeatedly: a second call never adds a duplicate handler.
    """
    level = getattr(logging, settings.log_level, logging.INFO)
    root = logging.getLogger()
    has_stdout = any(
        isinstance(handler, logging.StreamHandler)
        and getattr(handler, "stream", None) is sys.stdout
        for handler in root.handlers
    )
    if not has_stdout:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)
    return logging.getLogger(logger_name)


def normalise_string(value: Any) -> str | None:
    """Return the trimmed string, or ``None`` for non-strings and blanks."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def describe_run_error(error: BaseException | None) -> str:
    """Render *error* as a one-line diagnostic suitable for a failed-run check."""
    if error is None:
        return "unknown error"

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        url = error.request.url
        return f"{error} (status {status}) while fetching {url}".strip()

    if isinstance(error, httpx.RequestError):
        base = str(error) or type(error).__name__
        try:
            url = error.request.url
        except RuntimeError:
            # The request property raises when no request is attached.
            return base
        return f"{base} while fetching {url}"

    message = str(error)
    if message:
        return message
    if error.args:
        try:
            return json.dumps(error.args)
        except (TypeError, ValueError):
            return repr(error.args)
    return type(error).__name__
