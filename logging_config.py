"""
Logging setup for SportBot entry points (the Flask app and scripts).

Library modules only call logging.getLogger(__name__). configure_logging()
attaches the handlers to the root logger:

- console, INFO by default
- sportbot.log: everything except per-query traces
- traces.log: the sportbot.trace lines written by tracing.Trace
- errors.log: ERROR and above (dropped query records, scheduler crashes)
"""

import json
import logging
import os
from logging.handlers import RotatingFileHandler

from config import Config

TRACE_LOGGER = 'sportbot.trace'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

# Chatty under the OpenAI client and the dev server
NOISY_LOGGERS = ('urllib3', 'httpx', 'httpcore', 'openai', 'werkzeug')

logger = logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    """Outputs log records as single-line JSON objects."""

    def format(self, record):
        log_entry = {
            "timestamp": self.formatTime(record, DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


class ExcludeTraces(logging.Filter):
    def filter(self, record):
        return not record.name.startswith(TRACE_LOGGER)


def _sportbot_handlers(root):
    return [h for h in root.handlers if getattr(h, 'sportbot', False)]


def configure_logging(log_dir=None, json_format=None, console_level=logging.INFO, force=False):
    """
    Attach SportBot's handlers to the root logger.

    A second call is a no-op unless force=True, which replaces the handlers.
    Returns the log directory in use, or None if only the console is logging.
    """
    root = logging.getLogger()
    existing = _sportbot_handlers(root)
    if existing and not force:
        return getattr(existing[0], 'log_dir', None)
    for handler in existing:
        root.removeHandler(handler)
        handler.close()

    log_dir = log_dir or Config.LOG_DIR
    if json_format is None:
        json_format = Config.LOG_FORMAT.lower() == 'json'
    formatter = JsonFormatter() if json_format else logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console = logging.StreamHandler()
    console.setLevel(console_level)
    handlers = [console]

    file_error = None
    try:
        os.makedirs(log_dir, exist_ok=True)

        main = RotatingFileHandler(os.path.join(log_dir, 'sportbot.log'), maxBytes=5*1024*1024, backupCount=5)
        main.setLevel(logging.DEBUG)
        main.addFilter(ExcludeTraces())

        traces = RotatingFileHandler(os.path.join(log_dir, 'traces.log'), maxBytes=5*1024*1024, backupCount=3)
        traces.setLevel(logging.DEBUG)
        traces.addFilter(logging.Filter(TRACE_LOGGER))

        errors = RotatingFileHandler(os.path.join(log_dir, 'errors.log'), maxBytes=2*1024*1024, backupCount=3)
        errors.setLevel(logging.ERROR)

        handlers += [main, traces, errors]
    except OSError as e:
        file_error = e
        log_dir = None

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.sportbot = True
        handler.log_dir = log_dir
        root.addHandler(handler)
    root.setLevel(logging.DEBUG)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if file_error is not None:
        logger.warning(f"File logging disabled, console only: {file_error}")
    else:
        logger.info(f"SportBot logging initialized in {log_dir}")
    return log_dir
