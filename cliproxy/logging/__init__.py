"""Logging module for the bridge."""

from .recorder import (
    RequestLogRecorder,
    configure_log_dir,
    log_error_event,
    wait_for_pending_logs,
)
from .setup import logger, setup_logging

__all__ = [
    "logger",
    "setup_logging",
    "RequestLogRecorder",
    "configure_log_dir",
    "log_error_event",
    "wait_for_pending_logs",
]
