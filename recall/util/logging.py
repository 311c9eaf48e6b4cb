"""
Structured logging for the retrieval and memory core.
Vector, memory-tier, task-queue and heartbeat operations all log through one formatter.
"""

import logging
from typing import Any, Dict, List

DEFAULT_SENSITIVE_FIELDS = ['text', 'content', 'message', 'summary', 'api_key', 'secret', 'password']


class StructuredLogger:
    """Structured logger for ingestion, retrieval, compression and background tasks."""

    def __init__(self, name: str = "recall"):
        self.logger = logging.getLogger(name)
        self.logger.setLevel(logging.INFO)

        # Create handler if not already set
        if not self.logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter(
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
            )
            handler.setFormatter(formatter)
            self.logger.addHandler(handler)

    def log_operation(self, operation: str, status: str, details: Dict[str, Any] = None, level: int = logging.INFO):
        """Log a structured operation."""
        message = f"Operation: {operation}, Status: {status}"
        if details:
            message += f", Details: {details}"

        self.logger.log(level, message)

    def log_vector_operation(self, operation: str, content_hash: str, details: Dict[str, Any] = None, status: str = "success"):
        """Log a vector store operation."""
        log_details = {"content_hash": content_hash}
        if details:
            log_details.update(details)

        level = logging.WARNING if status in ("failed", "skipped") else logging.INFO
        self.log_operation(f"vector.{operation}", status, log_details, level)

    def log_memory_operation(self, operation: str, user_id: str, session_id: str = None, details: Dict[str, Any] = None, status: str = "success"):
        """Log a memory-tier operation (turns, compression, facts, decay)."""
        log_details = {"user_id": user_id}
        if session_id is not None:
            log_details["session_id"] = session_id
        if details:
            log_details.update(sanitize_payload(details))

        level = logging.WARNING if status == "failed" else logging.INFO
        self.log_operation(f"memory.{operation}", status, log_details, level)

    def log_embedding_fallback(self, provider: str, error: str):
        """Log the switch from a remote embedding provider to the local one."""
        self.log_operation("embedding.fallback", "degraded", {
            "provider": provider,
            "error": error[:200]
        }, logging.WARNING)

    def log_task(self, task_id: int, task_type: str, status: str, details: Dict[str, Any] = None):
        """Log a background task state transition."""
        log_details = {"task_id": task_id, "task_type": task_type}
        if details:
            log_details.update(details)

        if status == "abandoned":
            level = logging.ERROR
        elif status in ("retry", "released"):
            level = logging.WARNING
        else:
            level = logging.INFO
        self.log_operation(f"task.{task_type}", status, log_details, level)

    def log_heartbeat_task(self, task_name: str, start_time: float, end_time: float, status: str = "success", details: Dict[str, Any] = None):
        """Log heartbeat task execution."""
        duration_ms = round((end_time - start_time) * 1000, 2)
        log_details = {"duration_ms": duration_ms}
        if details:
            log_details.update(details)
        elif status == "success":
            log_details["message"] = f"Heartbeat task '{task_name}' completed in {duration_ms}ms"
        elif status == "failed":
            log_details["message"] = f"Heartbeat task '{task_name}' failed after {duration_ms}ms"

        level = logging.WARNING if status == "failed" else logging.DEBUG
        self.log_operation(f"heartbeat.{task_name}", status, log_details, level)

    # Standard logging methods for compatibility
    def info(self, message: str) -> None:
        """Log an info message."""
        self.logger.info(message)

    def warning(self, message: str) -> None:
        """Log a warning message."""
        self.logger.warning(message)

    def error(self, message: str) -> None:
        """Log an error message."""
        self.logger.error(message)

    def debug(self, message: str) -> None:
        """Log a debug message."""
        self.logger.debug(message)


def sanitize_payload(payload: Any, reveal_sensitive: bool = False, sensitive_fields: List[str] = None) -> Any:
    """Sanitize payloads for logging: redact conversational text, truncate long strings."""
    if sensitive_fields is None:
        sensitive_fields = DEFAULT_SENSITIVE_FIELDS

    if isinstance(payload, dict):
        sanitized = {}
        for k, v in payload.items():
            if reveal_sensitive or k not in sensitive_fields:
                sanitized[k] = sanitize_payload(v, reveal_sensitive, sensitive_fields)
            else:
                sanitized[k] = "[REDACTED]"
        return sanitized
    elif isinstance(payload, str):
        return payload[:100] + "..." if len(payload) > 100 else payload
    elif isinstance(payload, list):
        return [sanitize_payload(item, reveal_sensitive, sensitive_fields) for item in payload]
    else:
        return payload


# Global logger instance
logger = StructuredLogger()
