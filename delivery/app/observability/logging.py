"""Logging setup: route loguru records to the audit log file."""
from __future__ import annotations

import sys

from loguru import logger

from delivery.app.config.settings import Settings
from delivery.app.constants import DEFAULT_LOG_CATEGORY
from delivery.app.observability.audit_log import AuditLogger


def create_audit_logger(settings: Settings) -> AuditLogger:
    return AuditLogger(
        settings.log_file,
        max_file_size=settings.log_max_file_size_bytes,
        max_log_files=settings.log_max_files,
        trace_level=settings.log_trace_level,
        levels=settings.log_levels,
        categories=settings.log_categories,
        except_categories=settings.log_except_categories,
        flush_interval=settings.log_flush_interval,
        file_mode=settings.log_file_mode,
        dir_mode=settings.log_dir_mode,
    )


def configure_logging(settings: Settings) -> AuditLogger:
    """
    Replace loguru's default handler with the audit file sink.

    Sink failures are caught by loguru and reported on stderr, so a broken log file
    never interrupts message handling. The returned AuditLogger must be flushed by the
    host during shutdown.
    """
    audit_logger = create_audit_logger(settings)
    logger.remove()
    logger.configure(extra={"category": DEFAULT_LOG_CATEGORY})
    logger.add(audit_logger.sink, level=settings.log_level, format="{message}", catch=True)
    if settings.log_to_stderr:
        logger.add(
            sys.stderr,
            level=settings.log_level,
            format="{time:YYYY-MM-DD HH:mm:ss} [{level}][{extra[category]}] {message}",
        )
    return audit_logger
