from __future__ import annotations

import logging
import re
from typing import Any
from urllib.parse import urlsplit, urlunsplit

URL_TOKEN_RE = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)
API_KEY_ASSIGNMENT_RE = re.compile(r"(?i)(api[-_]?key\s*[:=]\s*)([^\s,;\"'&]+)")
API_KEY_QUERY_RE = re.compile(r"(?i)([?&](?:api[-_]?key)=)([^&#\s]+)")
SECRET_KEY_RE = re.compile(r"(ed25519:)([1-9A-HJ-NP-Za-km-z]{80,})")

_LEVEL_NUMBERS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def _sanitize_url_token(token: str) -> str:
    candidate = token
    trailing = ""
    while candidate and candidate[-1] in ".,);]}":
        trailing = candidate[-1] + trailing
        candidate = candidate[:-1]

    # RPC providers embed credentials in the path as often as in the query.
    parsed = urlsplit(candidate)
    if parsed.scheme.lower() in {"http", "https"} and parsed.netloc:
        path = parsed.path
        segments = [segment for segment in path.split("/") if segment]
        if any(len(segment) >= 24 and segment.isalnum() for segment in segments):
            path = "/***"
        candidate = urlunsplit((parsed.scheme, parsed.netloc, path, "", ""))
    return f"{candidate}{trailing}"


def sanitize_text(value: str) -> str:
    masked = URL_TOKEN_RE.sub(lambda match: _sanitize_url_token(match.group(0)), value)
    masked = API_KEY_QUERY_RE.sub(r"\1***", masked)
    masked = API_KEY_ASSIGNMENT_RE.sub(r"\1***", masked)
    masked = SECRET_KEY_RE.sub(r"\1***", masked)
    return masked


def sanitize_value(value: Any) -> Any:
    if isinstance(value, str):
        return sanitize_text(value)
    if isinstance(value, dict):
        return {key: sanitize_value(child) for key, child in value.items()}
    if isinstance(value, (list, set, frozenset)):
        return [sanitize_value(item) for item in value]
    if isinstance(value, tuple):
        return tuple(sanitize_value(item) for item in value)
    return value


def log_event(
    logger: logging.Logger,
    *,
    level: str,
    event: str,
    message: str,
    **fields: Any,
) -> None:
    extra = {"event": sanitize_value(event)}
    extra.update({key: sanitize_value(value) for key, value in fields.items()})
    safe_message = sanitize_text(message)

    if level == "exception":
        logger.exception(safe_message, extra=extra)
        return

    logger.log(_LEVEL_NUMBERS.get(level, logging.INFO), safe_message, extra=extra)
