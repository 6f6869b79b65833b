"""
Structured Logging Setup

Consistent logging configuration across all services.
Uses JSON format for structured logs in production.
"""

import logging
import math
import sys
import os
from datetime import datetime, timezone
from typing import Any
import json


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", "unknown"),
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add extra fields
        for key, value in record.__dict__.items():
            if key not in (
                "name", "msg", "args", "levelname", "levelno", "pathname",
                "filename", "module", "exc_info", "exc_text", "stack_info",
                "lineno", "funcName", "created", "msecs", "relativeCreated",
                "thread", "threadName", "processName", "process", "service",
                "message", "taskName",
            ):
                log_data[key] = value

        return json.dumps(log_data, default=str)


class ServiceLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds service name to all logs"""

    def process(self, msg: str, kwargs: dict) -> tuple[str, dict]:
        kwargs.setdefault("extra", {})
        kwargs["extra"]["service"] = self.extra.get("service", "unknown")
        return msg, kwargs


def setup_logging(
    service_name: str,
    log_level: str = "INFO",
    json_format: bool = True,
) -> logging.Logger:
    """
    Set up structured logging for a service.

    Args:
        service_name: Name of the service (e.g., "control", "device.modbus")
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format (True for production, False for dev)

    Returns:
        Configured logger instance
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(f"export_limiter.{service_name}")
    logger.setLevel(numeric_level)

    # Clear existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric_level)

    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    handler.setFormatter(formatter)
    logger.addHandler(handler)

    # Don't propagate to root logger
    logger.propagate = False

    return logger


def get_service_logger(service_name: str) -> ServiceLoggerAdapter:
    """
    Get a logger adapter with service context.

    Args:
        service_name: Name of the service

    Returns:
        Logger adapter with service name in all logs
    """
    log_level = os.environ.get("EXPORT_LIMITER_LOG_LEVEL", "INFO")
    json_format = os.environ.get("EXPORT_LIMITER_LOG_FORMAT", "json").lower() == "json"

    logger = setup_logging(service_name, log_level, json_format)
    return ServiceLoggerAdapter(logger, {"service": service_name})


def configure_service_loggers(log_level: str, json_format: bool) -> None:
    """Re-apply level and format to every logger created so far"""
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    formatter: logging.Formatter
    if json_format:
        formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    for name, logger in logging.root.manager.loggerDict.items():
        if not name.startswith("export_limiter.") or not isinstance(logger, logging.Logger):
            continue
        logger.setLevel(numeric_level)
        for handler in logger.handlers:
            handler.setLevel(numeric_level)
            handler.setFormatter(formatter)


def log_device_read(
    logger: logging.LoggerAdapter,
    device_name: str,
    register: str,
    value: Any,
    success: bool = True,
) -> None:
    """Log a device register read operation"""
    if success:
        logger.debug(
            f"Read {device_name}.{register} = {value}",
            extra={"device": device_name, "register": register, "value": value},
        )
    else:
        logger.warning(
            f"Failed to read {device_name}.{register}",
            extra={"device": device_name, "register": register},
        )


def log_device_write(
    logger: logging.LoggerAdapter,
    device_name: str,
    register: str,
    value: Any,
    success: bool = True,
) -> None:
    """Log a device register write operation"""
    if success:
        logger.debug(
            f"Write {device_name}.{register} = {value}",
            extra={"device": device_name, "register": register, "value": value},
        )
    else:
        logger.error(
            f"Failed to write {device_name}.{register} = {value}",
            extra={"device": device_name, "register": register, "value": value},
        )


def _fmt(value: float | None) -> str:
    if value is None or math.isnan(value):
        return "-"
    return f"{value:.1f}"


def log_frame(
    logger: logging.LoggerAdapter,
    timestamp: datetime,
    export_w: float,
    inverter_power_w: float | None,
    over_production_w: float,
    limit_pct: int | None,
    control_enabled_now: bool = False,
) -> None:
    """
    Log the single line emitted for every processed meter frame.

    Tab separated: time, export, inverter power, over-production, limit.
    The limit column is blank when nothing was written; a trailing '*'
    marks the frame on which advanced power control had to be switched on.
    """
    pct = f"{limit_pct}%" if limit_pct is not None else ""
    marker = " *" if control_enabled_now else ""
    t = timestamp.replace(microsecond=0).isoformat()

    logger.info(
        f"{t}\t{_fmt(export_w)}\t{_fmt(inverter_power_w)}\t"
        f"{_fmt(over_production_w)}\t{pct}{marker}",
        extra={
            "frame_time": timestamp.isoformat(),
            "export_w": export_w,
            "inverter_power_w": inverter_power_w,
            "over_production_w": over_production_w,
            "limit_pct": limit_pct,
            "control_enabled_now": control_enabled_now,
        },
    )
