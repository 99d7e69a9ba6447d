# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_identity

import logging
import os
import re
import sys
from typing import Any

from loguru import logger
from opentelemetry import trace

__all__ = ["logger", "configure_logging", "redact"]

_REDACTED = "[REDACTED]"
_TOKEN_CHARS = r"[a-zA-Z0-9\-._~+/]+=*"

# (pattern, replacement) pairs applied in order to every log message.
REDACTION_PATTERNS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(rf"(?i)(authorization\s*:\s*bearer\s+)({_TOKEN_CHARS})"), rf"\1{_REDACTED}"),
    (re.compile(rf"(?i)(?<![a-z])(bearer\s+)(?!\[REDACTED\])({_TOKEN_CHARS})"), rf"\1{_REDACTED}"),
    (
        re.compile(rf"(?i)(access_token|refresh_token|client_secret|secret)([\"']?\s*[:=]\s*[\"']?)({_TOKEN_CHARS})[\"']?"),
        rf"\1\2{_REDACTED}",
    ),
    (re.compile(r"(https?://[^:/?#\s]+:)([^@/?#\s]+)(@[^/?#\s]+)"), rf"\1{_REDACTED}\3"),
)


def redact(message: str) -> str:
    """
    Masks bearer tokens, client secrets and URL credentials in a log message.
    """
    for pattern, replacement in REDACTION_PATTERNS:
        message = pattern.sub(replacement, message)
    return message


class InterceptHandler(logging.Handler):
    """
    Redirects standard logging messages to Loguru.
    Ensures libraries using standard logging (httpx, authlib) are captured uniformly.
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno  # type: ignore[assignment]

        # Find caller from where originated the logged message
        frame = logging.currentframe()
        depth = 2
        while frame and (frame.f_code.co_filename == logging.__file__ or frame.f_code.co_filename == __file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def record_patcher(record: dict[str, Any]) -> None:
    """
    Redacts secrets from the message and injects OpenTelemetry trace_id and span_id.
    Used as a patcher for Loguru.
    """
    record["message"] = redact(record["message"])

    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        record["extra"]["trace_id"] = format(ctx.trace_id, "032x")
        record["extra"]["span_id"] = format(ctx.span_id, "016x")


def configure_logging() -> None:
    """
    Configures the logger based on environment variables.

    `TENANT_AUTH_LOG_LEVEL` sets the level (default INFO). `TENANT_AUTH_LOG_JSON=true`
    switches from human-readable stderr output to JSON lines on stdout.
    Call this to reload configuration if env vars change.
    """
    log_level = os.getenv("TENANT_AUTH_LOG_LEVEL", "INFO").upper()
    log_json = os.getenv("TENANT_AUTH_LOG_JSON", "false").lower() == "true"

    try:
        logger.level(log_level)
    except ValueError:
        log_level = "INFO"

    logger.configure(handlers=[], patcher=record_patcher)  # type: ignore[arg-type]

    if log_json:
        logger.add(sys.stdout, level=log_level, serialize=True)
    else:
        format_str = (
            "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
            "<level>{level: <8}</level> | "
            "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
            "<level>{message}</level>"
        )
        logger.add(sys.stderr, level=log_level, format=format_str)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    numeric_level = logging.getLevelName(log_level)
    if isinstance(numeric_level, int):
        logging.getLogger().setLevel(numeric_level)
    else:
        logging.getLogger().setLevel(logging.INFO)


# Initialize on import
configure_logging()
