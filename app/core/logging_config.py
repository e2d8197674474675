import os
import re
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional


class SecurityFilter(logging.Filter):
    """Filter to remove tokens, secrets and payment references from log lines"""

    SENSITIVE_PATTERNS = [
        # JWT tokens (eyJ...)
        (r'eyJ[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*\.[A-Za-z0-9_-]*', '[JWT_TOKEN]'),
        # Bearer tokens
        (r'Bearer\s+[A-Za-z0-9._-]+', 'Bearer [TOKEN]'),
        # Secret keys
        (r'secret["\s]*[:=]["\s]*[^,}\s]+', 'secret: [HIDDEN]'),
        # Payment references handed over by the payment service
        (r'payment_id["\s]*[:=]["\s]*"?[A-Za-z0-9_-]+"?', 'payment_id: [HIDDEN]'),
        # Email addresses
        (r'[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}', '[EMAIL]'),
    ]

    def filter(self, record):
        if hasattr(record, 'msg'):
            msg = str(record.msg)
            for pattern, replacement in self.SENSITIVE_PATTERNS:
                msg = re.sub(pattern, replacement, msg, flags=re.IGNORECASE)
            record.msg = msg
        return True


def setup_logging():
    """Configure application logging based on environment variables"""

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    sql_log_level = os.getenv("SQL_LOG_LEVEL", "WARNING").upper()
    log_format = os.getenv("LOG_FORMAT", "text").lower()

    # Empty LOG_FILE_PATH disables the file handler
    default_log_path = Path(__file__).resolve().parents[2] / "logs" / "app.log"
    log_file_path = os.getenv("LOG_FILE_PATH", str(default_log_path))
    enable_security_filter = os.getenv("ENABLE_SECURITY_FILTER", "false").lower() == "true"

    if log_format == "json":
        formatter = logging.Formatter(
            '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
            '"module": "%(name)s", "message": "%(message)s", '
            '"line": %(lineno)d, "function": "%(funcName)s"}'
        )
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level, logging.INFO))
    root_logger.handlers.clear()

    security_filter = SecurityFilter() if enable_security_filter else None

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level, logging.INFO))
    console_handler.setFormatter(formatter)
    if security_filter:
        console_handler.addFilter(security_filter)
    root_logger.addHandler(console_handler)

    if log_file_path:
        Path(log_file_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file_path,
            maxBytes=10*1024*1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(getattr(logging, log_level, logging.INFO))
        file_handler.setFormatter(formatter)
        if security_filter:
            file_handler.addFilter(security_filter)
        root_logger.addHandler(file_handler)

    sql_logger = logging.getLogger('sqlalchemy.engine')
    sql_logger.setLevel(getattr(logging, sql_log_level, logging.WARNING))

    app_logger = logging.getLogger('app')
    app_logger.setLevel(getattr(logging, log_level, logging.INFO))

    root_logger.info(
        "Logging initialized level=%s sql=%s file=%s",
        log_level,
        sql_log_level,
        log_file_path or "-",
    )
    return root_logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for the given module name"""
    return logging.getLogger(f"app.{name}")


def log_auth_event(event_type: str, user_id: Optional[int] = None,
                   studio_id: Optional[int] = None, success: bool = True):
    """Log token decoding outcomes without the token itself"""
    auth_logger = get_logger("auth")

    if success:
        auth_logger.info(
            f"Auth {event_type} successful - user: {user_id or 'unknown'} studio: {studio_id or 'unknown'}"
        )
    else:
        auth_logger.warning(
            f"Auth {event_type} failed - user: {user_id or 'unknown'} studio: {studio_id or 'unknown'}"
        )


def log_security_event(event_type: str, details: str, level: str = "WARNING"):
    """Log security-related events such as cross-studio access attempts"""
    security_logger = get_logger("security")
    log_level = getattr(logging, level.upper(), logging.WARNING)
    security_logger.log(log_level, f"Security event: {event_type} - {details}")
