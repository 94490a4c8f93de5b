"""
Production logging utility for structured JSON logging.

Provides event-specific logging functions with mandatory fields:
- timestamp (ISO8601)
- level
- service
- event

Optional fields (included when applicable):
- user_id
- image_id
- scene_id
- duration_ms

Usage:
    from pawstudio.utils.logging import configure_logging, log_generation_started

    configure_logging('pawstudio-api', 'INFO')
    log_generation_started(logger, image_id=12, user_id='456', scene_id=3)
"""
import logging
import sys
from typing import Optional, Dict, Any
from pythonjsonlogger import jsonlogger


class StructuredLogger:
    """Structured JSON logger with mandatory fields."""

    _service_name = None
    _configured = False

    @classmethod
    def configure(cls, service_name: str, log_level: str = "INFO"):
        """
        Configure structured JSON logging for the application.

        Args:
            service_name: Service identifier written on every record
            log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        """
        if cls._configured:
            return

        cls._service_name = service_name

        root_logger = logging.getLogger()
        root_logger.handlers = []

        formatter = jsonlogger.JsonFormatter(
            '%(timestamp)s %(levelname)s %(name)s %(message)s',
            timestamp=True,
            json_ensure_ascii=False
        )

        # stdout for container logs
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(formatter)

        root_logger.addHandler(handler)
        root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

        class ServiceFilter(logging.Filter):
            def filter(self, record):
                record.service = cls._service_name
                return True

        handler.addFilter(ServiceFilter())
        cls._configured = True


def _build_log_extra(
    event: str,
    user_id: Optional[str] = None,
    image_id: Optional[int] = None,
    scene_id: Optional[int] = None,
    duration_ms: Optional[float] = None,
    **kwargs
) -> Dict[str, Any]:
    """
    Build extra fields for structured logging.

    Args:
        event: Event name (mandatory)
        user_id: Optional user ID
        image_id: Optional image ID
        scene_id: Optional scene ID
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields

    Returns:
        Dictionary of extra fields
    """
    extra = {
        "event": event,
        **kwargs
    }

    if user_id:
        extra["user_id"] = user_id
    if image_id is not None:
        extra["image_id"] = image_id
    if scene_id is not None:
        extra["scene_id"] = scene_id
    if duration_ms is not None:
        extra["duration_ms"] = round(duration_ms, 2)

    return extra


def _log_error(logger: logging.Logger, message: str, extra: Dict[str, Any], include_traceback: bool):
    if include_traceback and sys.exc_info()[0] is not None:
        logger.error(message, extra=extra, exc_info=sys.exc_info())
    else:
        logger.error(message, extra=extra)


# Generation event functions

def log_generation_started(
    logger: logging.Logger,
    image_id: int,
    user_id: str,
    scene_id: int,
    trial_mode: bool = False,
    **kwargs
):
    """
    Log the start of a generation request.

    Args:
        logger: Logger instance
        image_id: Image row ID (required)
        user_id: User ID (required)
        scene_id: Scene ID (required)
        trial_mode: Whether the generation is free
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="generation_started",
        user_id=user_id,
        image_id=image_id,
        scene_id=scene_id,
        trial_mode=trial_mode,
        **kwargs
    )
    logger.info(f"Generation started: image {image_id}", extra=extra)


def log_generation_completed(
    logger: logging.Logger,
    image_id: int,
    user_id: str,
    duration_ms: float,
    credits_used: int,
    **kwargs
):
    """
    Log a completed generation.

    Args:
        logger: Logger instance
        image_id: Image row ID (required)
        user_id: User ID (required)
        duration_ms: End-to-end duration in milliseconds (required)
        credits_used: Credits debited (0 in trial mode)
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="generation_completed",
        user_id=user_id,
        image_id=image_id,
        duration_ms=duration_ms,
        credits_used=credits_used,
        **kwargs
    )
    logger.info(f"Generation completed: image {image_id}", extra=extra)


def log_generation_failed(
    logger: logging.Logger,
    image_id: Optional[int],
    user_id: str,
    error: str,
    error_code: Optional[str] = None,
    duration_ms: Optional[float] = None,
    include_traceback: bool = True,
    **kwargs
):
    """
    Log a failed generation.

    Args:
        logger: Logger instance
        image_id: Image row ID, None when failing before the row exists
        user_id: User ID (required)
        error: Error message
        error_code: Typed error code, if any
        duration_ms: Optional duration in milliseconds
        include_traceback: Whether to include stack trace
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="generation_failed",
        user_id=user_id,
        image_id=image_id,
        duration_ms=duration_ms,
        error=str(error),
        **kwargs
    )
    if error_code:
        extra["error_code"] = error_code

    _log_error(logger, f"Generation failed: image {image_id} - {error}", extra, include_traceback)


# Provider event functions

def log_provider_request(
    logger: logging.Logger,
    provider: str,
    operation: str,
    duration_ms: Optional[float] = None,
    **kwargs
):
    """
    Log an external provider request (flux, b2).

    Args:
        logger: Logger instance
        provider: Provider name (required)
        operation: Operation name (submit, poll, upload, delete) (required)
        duration_ms: Optional duration in milliseconds
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="provider_request",
        duration_ms=duration_ms,
        provider=provider,
        operation=operation,
        **kwargs
    )
    logger.info(f"Provider request: {provider}.{operation}", extra=extra)


def log_provider_failure(
    logger: logging.Logger,
    provider: str,
    operation: str,
    error: str,
    duration_ms: Optional[float] = None,
    include_traceback: bool = False,
    **kwargs
):
    """
    Log an external provider failure.

    Args:
        logger: Logger instance
        provider: Provider name (required)
        operation: Operation name (required)
        error: Error message (required)
        duration_ms: Optional duration in milliseconds
        include_traceback: Whether to include stack trace
        **kwargs: Additional fields
    """
    extra = _build_log_extra(
        event="provider_failure",
        duration_ms=duration_ms,
        provider=provider,
        operation=operation,
        error=str(error),
        **kwargs
    )
    _log_error(logger, f"Provider failure: {provider}.{operation} - {error}", extra, include_traceback)


# Credit event functions

def log_credits_debited(logger: logging.Logger, user_id: str, amount: int, balance: int, **kwargs):
    extra = _build_log_extra(event="credits_debited", user_id=user_id, amount=amount, balance=balance, **kwargs)
    logger.info(f"Debited {amount} credits from user {user_id}", extra=extra)


def log_credits_granted(
    logger: logging.Logger,
    user_id: str,
    amount: int,
    source: str,
    payment_ref: Optional[str] = None,
    **kwargs
):
    extra = _build_log_extra(event="credits_granted", user_id=user_id, amount=amount, source=source, **kwargs)
    if payment_ref:
        extra["payment_ref"] = payment_ref
    logger.info(f"Granted {amount} credits to user {user_id} ({source})", extra=extra)


def configure_logging(service_name: str, log_level: str = "INFO"):
    """Configure logging (alias for StructuredLogger.configure)."""
    StructuredLogger.configure(service_name, log_level)
