"""
Structured logging configuration with JSON output and PII masking.

Provides an audit trail for credential and invoice lifecycle events.
"""

import logging
import re
import sys
from typing import Any

from pythonjsonlogger import jsonlogger

from marketplace_sync.core.config import settings

# LogRecord attributes that must never be rewritten by the masking pass
_RESERVED_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def mask_sensitive_data(text: str) -> str:
    """Mask email addresses in text, keeping the first two characters and the domain."""
    return PIIMaskingFormatter.EMAIL_PATTERN.sub(
        lambda m: PIIMaskingFormatter._mask_email(m.group(0)), text
    )


class PIIMaskingFormatter(jsonlogger.JsonFormatter):
    """
    JSON formatter with PII (Personally Identifiable Information) masking.

    Masks buyer email addresses in log messages and extra fields if configured.
    """

    EMAIL_PATTERN = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.mask_pii = settings.mask_customer_data_in_logs
        super().__init__(*args, **kwargs)

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with PII masking if enabled."""
        if self.mask_pii:
            record.msg = mask_sensitive_data(str(record.msg))

            for key, value in list(record.__dict__.items()):
                if key not in _RESERVED_ATTRS and isinstance(value, str):
                    record.__dict__[key] = mask_sensitive_data(value)

        return super().format(record)

    @staticmethod
    def _mask_email(email: str) -> str:
        """Mask email address keeping first 2 chars and domain."""
        parts = email.split("@")
        if len(parts) == 2:
            username, domain = parts
            if len(username) > 2:
                masked_username = username[:2] + "*" * (len(username) - 2)
            else:
                masked_username = "*" * len(username)
            return f"{masked_username}@{domain}"
        return "***@***.***"


class TextFormatter(logging.Formatter):
    """
    Simple text formatter for development/console output.
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        self.mask_pii = settings.mask_customer_data_in_logs
        super().__init__(*args, **kwargs)

    def format(self, record: logging.LogRecord) -> str:
        if self.mask_pii:
            record.msg = mask_sensitive_data(str(record.msg))

        return super().format(record)


def setup_logging() -> None:
    """
    Configure application-wide logging.

    Sets up structured JSON logging for production or text logging for development.
    Respects LOG_LEVEL and LOG_FORMAT from settings.
    """
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    if settings.log_format == "json":
        formatter: logging.Formatter = PIIMaskingFormatter(
            fmt="%(asctime)s %(name)s %(levelname)s %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    else:
        formatter = TextFormatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    if settings.is_development and settings.debug:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)

    root_logger.info(
        "Logging configured",
        extra={
            "log_level": settings.log_level,
            "log_format": settings.log_format,
            "environment": settings.app_env,
        },
    )


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured logger instance
    """
    return logging.getLogger(name)


class AuditLogger:
    """
    Specialized logger for the integration audit trail.

    Every credential change, deactivation and generated invoice is logged with full context.
    """

    def __init__(self, logger_name: str = "audit") -> None:
        self.logger = logging.getLogger(logger_name)

    def log_integration_connected(
        self,
        integration_id: str,
        tenant_id: str,
        external_account_id: str,
        **kwargs: Any,
    ) -> None:
        self.logger.info(
            "Integration connected",
            extra={
                "event": "integration_connected",
                "integration_id": integration_id,
                "tenant_id": tenant_id,
                "external_account_id": external_account_id,
                **kwargs,
            },
        )

    def log_token_refreshed(self, integration_id: str, expires_in: int, **kwargs: Any) -> None:
        self.logger.info(
            "Access token refreshed",
            extra={
                "event": "token_refreshed",
                "integration_id": integration_id,
                "expires_in": expires_in,
                **kwargs,
            },
        )

    def log_integration_disabled(self, integration_id: str, reason: str, **kwargs: Any) -> None:
        self.logger.warning(
            "Integration disabled",
            extra={
                "event": "integration_disabled",
                "integration_id": integration_id,
                "reason": reason,
                **kwargs,
            },
        )

    def log_invoice_created(
        self,
        external_order_id: str,
        invoice_id: str,
        invoice_number: str,
        tenant_id: str,
        **kwargs: Any,
    ) -> None:
        """Log invoice creation."""
        self.logger.info(
            "Invoice created",
            extra={
                "event": "invoice_created",
                "external_order_id": external_order_id,
                "invoice_id": invoice_id,
                "invoice_number": invoice_number,
                "tenant_id": tenant_id,
                **kwargs,
            },
        )

    def log_error(self, event: str, error: Exception, **kwargs: Any) -> None:
        """Log error with context."""
        self.logger.error(
            f"Error in {event}",
            extra={
                "event": event,
                "error_type": type(error).__name__,
                "error_message": str(error),
                **kwargs,
            },
            exc_info=error,
        )


# Global audit logger instance
audit_logger = AuditLogger()
