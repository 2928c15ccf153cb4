"""
ContextVault Structured Logging Configuration

Provides:
- JSON structured logging for production
- Colorized console output for development
- Performance logging decorator
- Audit logging for searches and embedding runs

Usage:
    from core.logging_config import setup_logging, get_logger

    # At process startup
    setup_logging(level='INFO', json_format=True)

    # In modules
    logger = get_logger(__name__)
    logger.info('Message', extra={'scope': 'user-123'})
"""

import json
import logging
import sys
import time
import traceback
from datetime import datetime, timezone
from functools import wraps

# Attributes every LogRecord has; anything else came in through extra=
_RESERVED = frozenset((
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'stack_info', 'exc_info', 'exc_text', 'thread', 'threadName',
    'taskName', 'message',
))


# =============================================================================
# Custom Formatters
# =============================================================================

class JSONFormatter(logging.Formatter):
    """JSON structured log formatter for production."""

    def format(self, record):
        log_entry = {
            'timestamp': datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith('_'):
                continue
            log_entry[key] = value

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return json.dumps(log_entry, default=str)


class ColoredFormatter(logging.Formatter):
    """Colorized console formatter for development."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record):
        color = self.COLORS.get(record.levelname, '')
        reset = self.RESET

        timestamp = datetime.fromtimestamp(record.created).strftime('%Y-%m-%d %H:%M:%S')

        parts = [
            f'{color}[{timestamp}]{reset}',
            f'{color}{record.levelname:8}{reset}',
            f'{record.name}:',
            record.getMessage()
        ]

        if hasattr(record, 'search_type'):
            parts.insert(2, f'[{record.search_type}]')

        if hasattr(record, 'duration_ms'):
            parts.append(f'({record.duration_ms}ms)')

        message = ' '.join(parts)

        if record.exc_info:
            message += '\n' + ''.join(traceback.format_exception(*record.exc_info))

        return message


# =============================================================================
# Logger Setup
# =============================================================================

def setup_logging(level='INFO', json_format=False, stream=None):
    """
    Configure the root logger.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Use JSON format instead of colored console output
        stream: Output stream (default: stdout)
    """
    numeric_level = getattr(logging, level.upper())

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(JSONFormatter() if json_format else ColoredFormatter())

    root_logger.addHandler(console_handler)

    root_logger.debug('Logging configured', extra={
        'format': 'json' if json_format else 'colored',
        'level': level
    })

    return root_logger


def get_logger(name):
    """Get a logger with the given name."""
    return logging.getLogger(name)


# =============================================================================
# Performance Logging Decorator
# =============================================================================

def log_performance(logger_name=None):
    """
    Decorator to log function duration at DEBUG, and failures at ERROR.

    Usage:
        @log_performance('contextvault.search')
        def hybrid_search(query):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(logger_name or func.__module__)
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                duration_ms = int((time.time() - start_time) * 1000)
                logger.error(
                    f'{func.__name__} failed: {str(e)}',
                    extra={
                        'function': func.__name__,
                        'duration_ms': duration_ms,
                        'error_type': type(e).__name__,
                    }
                )
                raise

            duration_ms = int((time.time() - start_time) * 1000)
            logger.debug(
                f'{func.__name__} completed',
                extra={'function': func.__name__, 'duration_ms': duration_ms}
            )
            return result

        return wrapper
    return decorator


# =============================================================================
# Audit Logging
# =============================================================================

class AuditLogger:
    """
    Audit logger for searches and embedding runs.

    Usage:
        audit = AuditLogger()
        audit.log_search(query='react hooks', results_count=7, mode='hybrid')
    """

    def __init__(self):
        self.logger = get_logger('contextvault.audit')

    def log_search(self, query, results_count, mode='hybrid', scope=None,
                   duration_ms=None, degraded=False):
        """Log a search operation."""
        self.logger.info(
            'Search performed',
            extra={
                'audit_type': 'search',
                'query': query[:100] if query else None,
                'results_count': results_count,
                'search_type': mode,
                'scope': scope,
                'duration_ms': duration_ms,
                'degraded': degraded
            }
        )

    def log_embedding_run(self, scope, total, successful, failed, duration_seconds=None):
        """Log a batch embedding (re)generation."""
        self.logger.info(
            'Embedding regeneration completed',
            extra={
                'audit_type': 'embedding_run',
                'scope': scope,
                'total_entries': total,
                'successful': successful,
                'failed': failed,
                'duration_seconds': duration_seconds
            }
        )
