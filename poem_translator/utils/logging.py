"""
Logging Utilities
=================
Named application loggers plus the in-memory buffer behind the /logs console.

Buffer entries may carry a job id so the console can follow a single job.
Warnings and errors from the named loggers are mirrored into the buffer.
"""
import os
import re
import logging
import threading
from collections import deque
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import List, Dict, Optional
from poem_translator.config import config

ANSI_PATTERN = re.compile(r'\033\[[0-9;]*m')
_JOB_ID_PATTERN = re.compile(r'\bjob[ =]([0-9a-f]{32})\b', re.IGNORECASE)


class LogBuffer:
    """Bounded, thread-safe ring of console entries with increasing ids."""

    def __init__(self, max_size: int = None):
        self.entries = deque(maxlen=max_size or config.logging.log_buffer_size)
        self.lock = threading.Lock()
        self.last_id = 0

    def add(self, level: str, source: str, message: str, job_id: str = None) -> Dict:
        with self.lock:
            self.last_id += 1
            entry = {
                'id': self.last_id,
                'timestamp': datetime.now().strftime('%H:%M:%S.%f')[:-3],
                'level': level,
                'source': source,
                'job_id': job_id,
                'message': message
            }
            self.entries.append(entry)
            return entry

    def get_all(self, job_id: str = None) -> List[Dict]:
        return self.get_since(0, job_id)

    def get_since(self, since_id: int, job_id: str = None) -> List[Dict]:
        """Entries newer than since_id, oldest first, optionally for one job."""
        with self.lock:
            return [
                e for e in self.entries
                if e['id'] > since_id and (job_id is None or e['job_id'] == job_id)
            ]

    def clear(self):
        with self.lock:
            self.entries.clear()
            self.last_id = 0


log_buffer = LogBuffer()


class ANSIStripFormatter(logging.Formatter):
    """Formatter that strips ANSI codes for file output."""

    def format(self, record):
        return ANSI_PATTERN.sub('', super().format(record))


class ConsoleBufferHandler(logging.Handler):
    """Copies log records into the console buffer, tagged with their job."""

    def __init__(self, buffer: LogBuffer, level: int = logging.WARNING):
        super().__init__(level)
        self.buffer = buffer

    def emit(self, record: logging.LogRecord):
        try:
            message = ANSI_PATTERN.sub('', record.getMessage())
        except (TypeError, ValueError):
            self.handleError(record)
            return
        job_id = getattr(record, 'job_id', None)
        if job_id is None:
            match = _JOB_ID_PATTERN.search(message)
            job_id = match.group(1) if match else None
        source = record.name.rsplit('.', 1)[-1].upper()
        self.buffer.add(record.levelname, source, message, job_id)


class AppLogger:
    """
    Named application loggers, one log file each.

    app         - startup, shutdown, worker lifecycle
    scheduler   - tick selection, claims, job status changes
    translation - generation calls, repairs, fallbacks
    api         - request handling
    database    - store and cache operations
    """

    def __init__(self, log_dir: str = None, buffer: LogBuffer = None):
        self.log_dir = log_dir or config.paths.log_folder
        self.buffer = buffer or log_buffer
        os.makedirs(self.log_dir, exist_ok=True)

        self.app_logger = self._setup_logger('app', 'app.log')
        self.scheduler_logger = self._setup_logger('scheduler', 'scheduler.log')
        self.translation_logger = self._setup_logger('translation', 'translations.log')
        self.api_logger = self._setup_logger('api', 'api.log')
        self.db_logger = self._setup_logger('database', 'database.log')

    def _setup_logger(self, component: str, filename: str) -> logging.Logger:
        logger = logging.getLogger(f'poem_translator.{component}')
        level = logging.DEBUG if config.logging.verbose_debug else logging.INFO
        logger.setLevel(level)

        # Loggers are process-wide; a second AppLogger must not stack handlers
        if logger.handlers:
            return logger

        file_handler = RotatingFileHandler(
            os.path.join(self.log_dir, filename),
            maxBytes=config.logging.log_file_max_bytes,
            backupCount=config.logging.log_file_backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(ANSIStripFormatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(
            f'%(asctime)s [{component}] %(levelname)s: %(message)s',
            datefmt='%H:%M:%S'
        ))

        for handler in (file_handler, console_handler, ConsoleBufferHandler(self.buffer)):
            logger.addHandler(handler)
        return logger


_logger_instance: Optional[AppLogger] = None


def get_logger() -> AppLogger:
    """Get or create the global logger instance."""
    global _logger_instance
    if _logger_instance is None:
        _logger_instance = AppLogger()
    return _logger_instance


def debug_print(message: str, level: str = 'INFO', source: str = 'DEBUG', job_id: str = None):
    """
    Add a message to the log console buffer.

    Args:
        message: The message to log
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        source: Source identifier shown in the console
        job_id: Job the message belongs to, for per-job console filtering
    """
    log_buffer.add(level, source, ANSI_PATTERN.sub('', message), job_id)

    if config.logging.verbose_debug:
        print(message)
