"""Structured JSON logging for the art studio backend.

Bridge drops, fulfillment attempts and configuration resolutions are logged
as single-line JSON with their structured fields under ``data``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Optional


class JSONFormatter(logging.Formatter):
    """Formats log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if hasattr(record, "data"):
            entry["data"] = record.data  # type: ignore[attr-defined]
        if record.exc_info and record.exc_info[1]:
            entry["error"] = str(record.exc_info[1])
        return json.dumps(entry, ensure_ascii=False, default=str)


def setup_logging(
    log_dir: Path | None = None,
    level: int | str = logging.INFO,
) -> logging.Logger:
    """Configure structured logging for the ``artstudio`` package.

    Args:
        log_dir: Directory for log files. If None, logs to stderr only.
        level: Logging level (name or number).

    Returns:
        The root 'artstudio' logger.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger("artstudio")
    logger.setLevel(level)

    # Avoid duplicate handlers on repeated calls
    if logger.handlers:
        return logger

    fmt = JSONFormatter()

    if log_dir:
        log_dir.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_dir / "artstudio.jsonl", encoding="utf-8")
        fh.setFormatter(fmt)
        fh.setLevel(level)
        logger.addHandler(fh)

    sh = logging.StreamHandler()
    sh.setFormatter(fmt)
    sh.setLevel(logging.WARNING)
    logger.addHandler(sh)

    return logger


def log_bridge_drop(side: str, origin: str, message_type: Optional[str], reason: str) -> None:
    """Log a bridge message that was dropped without being processed."""
    logger = logging.getLogger("artstudio.bridge")
    level = logging.WARNING if reason == "origin_rejected" and message_type else logging.DEBUG
    logger.log(
        level,
        "bridge_drop",
        extra={"data": {
            "side": side,
            "origin": origin,
            "type": message_type,
            "reason": reason,
        }},
    )


def log_upload_attempt(
    step: str,
    attempt: int,
    max_attempts: int,
    outcome: str,
    status_code: Optional[int] = None,
    error: Optional[str] = None,
) -> None:
    """Log one fulfillment provider attempt."""
    logger = logging.getLogger("artstudio.fulfillment")
    level = logging.INFO if outcome == "success" else logging.WARNING
    logger.log(
        level,
        "upload_attempt",
        extra={"data": {
            "step": step,
            "attempt": attempt,
            "max_attempts": max_attempts,
            "outcome": outcome,
            "status_code": status_code,
            "error": error,
        }},
    )


def log_resolution(
    merchant_id: str,
    requested_id: Optional[int],
    resolved_id: Optional[int],
    resolved_via: Optional[str],
) -> None:
    """Log which tier a configuration lookup resolved through."""
    logger = logging.getLogger("artstudio.resolver")
    level = logging.INFO if resolved_via == "direct" else logging.WARNING
    logger.log(
        level,
        "configuration_resolved",
        extra={"data": {
            "merchant_id": merchant_id,
            "requested_id": requested_id,
            "resolved_id": resolved_id,
            "resolved_via": resolved_via,
        }},
    )


__all__ = [
    "JSONFormatter",
    "setup_logging",
    "log_bridge_drop",
    "log_upload_attempt",
    "log_resolution",
]
