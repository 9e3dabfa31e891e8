# ABOUTME: Structured logging with correlation IDs for the ArgoCD bridge
# ABOUTME: Configures structlog and records an audit trail of tool calls

"""
Structured logging with correlation IDs and audit trails.

=============================================================================
WHAT IS THIS FILE?
=============================================================================

1. STRUCTURED LOGGING: every log line is a set of key/value fields
   (event, level, timestamp, correlation_id, ...) rendered either as colored
   console text or as one JSON object per line.

2. CORRELATION IDs: one short id per tool call, attached to every log line
   emitted while that call runs. Concurrent calls do not mix ids because the
   id lives in a ContextVar, and each asyncio task has its own context.

3. AUDIT LOGGING: one entry per tool call saying what was done to which
   application and whether it worked.

=============================================================================
WHY STDERR?
=============================================================================

When the bridge runs over the stdio transport, stdout IS the protocol
channel: anything printed there that is not a protocol message corrupts the
session. All log output therefore goes to stderr.
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from pathlib import Path

# =============================================================================
# CORRELATION ID MANAGEMENT
# =============================================================================

# Each asyncio task sees its own value. Empty string means "not set yet".
correlation_id: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    """
    Get current correlation ID or generate new one.

    Code running outside a tool call (startup, shutdown) still gets an id,
    so every log line can be grouped.

    Returns:
        8-character correlation ID string, e.g. 'a3f8c2d1'.
    """
    cid = correlation_id.get()
    if not cid:
        # First 8 hex characters of a UUID4 are plenty for short-lived grouping
        cid = str(uuid.uuid4())[:8]
        correlation_id.set(cid)
    return cid


def set_correlation_id(cid: str) -> None:
    """
    Set correlation ID for current context.

    Called at the start of each tool call with the request id of the
    incoming message. Passing "" makes the next get_correlation_id()
    generate a fresh id.
    """
    correlation_id.set(cid)


def add_correlation_id(
    logger: structlog.types.WrappedLogger,  # noqa: ARG001 - Required by structlog Processor API
    method_name: str,  # noqa: ARG001 - Required by structlog Processor API
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """
    Structlog processor that adds the correlation ID to every event.

    A processor receives the event dictionary, returns it (possibly
    modified), and the next processor in the chain gets the result.
    """
    event_dict["correlation_id"] = get_correlation_id()
    return event_dict


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================


def configure_logging(
    level: str = "INFO",
    json_output: bool = False,
) -> None:
    """
    Configure structured logging. Call once at startup.

    PROCESSOR PIPELINE:
    -------------------
    1. merge_contextvars: fields bound with structlog.contextvars
    2. add_log_level: "level" field
    3. TimeStamper: ISO 8601 "timestamp" field
    4. add_correlation_id: "correlation_id" field
    5. Renderer: JSON or colored console text

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL. Unknown values
               fall back to INFO.
        json_output: JSON lines for log aggregators when True, colored
                     console output for humans when False.
    """
    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        add_correlation_id,
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        # Drops events below the configured level before any processor runs
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# AUDIT LOGGER
# =============================================================================


class AuditLogger:
    """
    Audit logger for recording tool calls.

    Every entry records:
    - timestamp: When it happened (UTC ISO 8601)
    - correlation_id: Tool call identifier
    - action: Tool name ("list_applications", "sync_application")
    - target: Application name, or "all" for list calls
    - result: "success" or "error"
    - details: Extra context (error text, sync options)

    TWO OUTPUT MODES:
    -----------------
    1. FILE: append one JSON object per line to the given path
    2. STRUCTLOG: emit an "audit" event through the normal log pipeline

    EXAMPLE ENTRIES:
    ----------------
    {"timestamp": "2024-01-15T10:30:00+00:00", "correlation_id": "abc12345",
     "action": "list_applications", "target": "all", "result": "success"}

    {"timestamp": "2024-01-15T10:30:05+00:00", "correlation_id": "def67890",
     "action": "sync_application", "target": "my-app", "result": "error",
     "details": {"error": "ArgoCD API error (404): application not found"}}
    """

    def __init__(self, log_path: Path | None = None) -> None:
        """
        Initialize audit logger.

        Args:
            log_path: File to append to, or None to log through structlog.
                      The parent directory must exist; the file is created
                      on first write and never truncated.
        """
        self._log_path = log_path
        self._logger = structlog.get_logger("audit")

    def log(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Record one auditable action.

        The specialised helpers below all delegate here.

        Args:
            action: Tool or operation name
            target: Target application name, or "all"
            result: "success", "error", or a write outcome such as "dry_run"
            details: Extra context; omitted from the entry when empty
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "correlation_id": get_correlation_id(),
            "action": action,
            "target": target,
            "result": result,
        }
        if details:
            entry["details"] = details

        if self._log_path:
            # Append mode: one JSON object per line, readable with jq
            with self._log_path.open("a") as f:
                f.write(json.dumps(entry) + "\n")
        else:
            self._logger.info(
                "audit",
                action=action,
                target=target,
                result=result,
                details=details,
            )

    def log_read(self, action: str, target: str) -> None:
        """Log a successful read operation."""
        self.log(action, target, "success")

    def log_write(
        self,
        action: str,
        target: str,
        result: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log a write operation.

        Args:
            action: The write tool (e.g., "sync_application")
            target: The application modified
            result: "success", or "dry_run" for a sync preview
            details: Options the write was issued with
        """
        self.log(action, target, result, details)

    def log_error(
        self,
        action: str,
        target: str,
        error: str,
    ) -> None:
        """
        Log a failed operation.

        Example:
            audit_logger.log_error(
                "get_application",
                "my-app",
                "ArgoCD API error (404): application not found",
            )
        """
        self.log(action, target, "error", {"error": error})
