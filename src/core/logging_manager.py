"""
Logging Manager for the WhatsApp automation engine
Structured logging with secret/phone-number masking and JSON output
"""

import logging
import logging.handlers
import json
import re
import sys
import time
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional


class LogCategory(Enum):
    """Log categories for structured logging"""
    SYSTEM = "system"
    ENGINE = "engine"
    EXTRACTION = "extraction"
    LEDGER = "ledger"
    DATABASE = "database"
    AUDIT = "audit"
    PERFORMANCE = "performance"


# Attributes every LogRecord has; anything else arrived through extra=
_STANDARD_RECORD_ATTRS = set(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {'message', 'asctime'}

_JID_PATTERN = re.compile(r'\b(\d{2,5})(\d{4,})(\d{2})(?=(?::\d+)?@(?:s\.whatsapp\.net|c\.us|lid)\b)')


class SecuritySafeFormatter(logging.Formatter):
    """Formatter that sanitizes sensitive information"""

    def __init__(self, *args, mask_phone_numbers: bool = True, **kwargs):
        super().__init__(*args, **kwargs)
        self.mask_phone_numbers = mask_phone_numbers
        self.sensitive_fields = {
            'password', 'secret', 'token', 'api_key', 'authorization', 'private_key'
        }

    def format(self, record):
        """Format log record with sensitive data sanitization"""
        record.msg = self._sanitize_message(record.getMessage())
        record.args = ()
        return super().format(record)

    def _sanitize_message(self, message: str) -> str:
        lowered = message.lower()
        for field_name in self.sensitive_fields:
            if field_name in lowered:
                # field=value or field: value
                pattern = rf'{field_name}["\']?\s*[:=]\s*["\']?([^"\s,}}]+)'
                message = re.sub(pattern, f'{field_name}=***', message, flags=re.IGNORECASE)

        if self.mask_phone_numbers:
            message = _JID_PATTERN.sub(lambda m: f"{m.group(1)}{'*' * len(m.group(2))}{m.group(3)}", message)

        return message

    def _sanitize_value(self, key: str, value: Any) -> Any:
        if any(sens in key.lower() for sens in self.sensitive_fields):
            return '***'
        if isinstance(value, str):
            return self._sanitize_message(value)
        if isinstance(value, dict):
            return {k: self._sanitize_value(k, v) for k, v in value.items()}
        return value


class JSONFormatter(SecuritySafeFormatter):
    """JSON formatter for structured logging, one object per record"""

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'component': record.name,
            'message': self._sanitize_message(record.getMessage()),
        }

        context = {
            key: self._sanitize_value(key, value)
            for key, value in vars(record).items()
            if key not in _STANDARD_RECORD_ATTRS and not key.startswith('_')
        }
        if context:
            log_data['context'] = context

        if record.exc_info:
            log_data['stack_trace'] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class LoggingManager:
    """Main logging manager for the application"""

    def __init__(self):
        self.configured = False
        self.handlers = []

    def configure(self, config: Dict[str, Any]):
        """Configure root logging from the 'logging' config section"""
        if self.configured:
            return

        log_config = config.get('logging', {})
        level = getattr(logging, str(log_config.get('level', 'INFO')).upper(), logging.INFO)
        mask_phones = log_config.get('mask_phone_numbers', True)

        root_logger = logging.getLogger()
        root_logger.setLevel(level)
        root_logger.handlers.clear()

        if log_config.get('console_enabled', True):
            console_handler = logging.StreamHandler(sys.stderr)
            console_handler.setLevel(level)

            if log_config.get('format', 'text') == 'json':
                console_formatter = JSONFormatter(mask_phone_numbers=mask_phones)
            else:
                # Human-readable format for development
                console_formatter = SecuritySafeFormatter(
                    '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
                    mask_phone_numbers=mask_phones
                )

            console_handler.setFormatter(console_formatter)
            root_logger.addHandler(console_handler)
            self.handlers.append(console_handler)

        if log_config.get('file_enabled', False):
            file_path = Path(log_config.get('file_path', 'logs/automations.log'))
            file_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.handlers.RotatingFileHandler(
                filename=str(file_path),
                maxBytes=log_config.get('file_max_size', 10 * 1024 * 1024),
                backupCount=log_config.get('file_backup_count', 5),
                encoding='utf-8'
            )
            file_handler.setLevel(level)
            file_handler.setFormatter(JSONFormatter(mask_phone_numbers=mask_phones))
            root_logger.addHandler(file_handler)
            self.handlers.append(file_handler)

        self.configured = True
        logging.getLogger(__name__).info(
            "Logging system configured",
            extra={'category': LogCategory.SYSTEM.value, 'level': logging.getLevelName(level)}
        )

    def shutdown(self):
        """Shutdown logging system"""
        root_logger = logging.getLogger()
        for handler in self.handlers:
            root_logger.removeHandler(handler)
            try:
                handler.close()
            except OSError as e:
                print(f"Error closing log handler: {e}", file=sys.stderr)

        self.handlers.clear()
        self.configured = False


# Global logging manager
logging_manager = LoggingManager()


def configure_logging(config: Dict[str, Any]):
    """Configure the global logging manager"""
    logging_manager.configure(config)


class PerformanceTimer:
    """Context manager that logs how long an operation took"""

    def __init__(self, logger: logging.Logger, operation: str, **context):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time: Optional[float] = None
        self.duration_ms: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self.start_time) * 1000
        extra = {
            'category': LogCategory.PERFORMANCE.value,
            'operation': self.operation,
            'duration_ms': round(self.duration_ms, 2),
            **self.context
        }
        if exc_type:
            self.logger.warning(f"Operation '{self.operation}' failed after {self.duration_ms:.2f}ms", extra=extra)
        else:
            self.logger.debug(f"Operation '{self.operation}' completed in {self.duration_ms:.2f}ms", extra=extra)
        return False
