"""
Structured logging configuration.

Called once from create_app() and from the CLI. Supports text (human-readable)
and JSON formats via LOG_FORMAT env var. LOG_LEVEL defaults to INFO.

Records logged inside a run carry its id: the workflow engine, flows and
portal agents log through run_logger(), and both formats print the run_id
(and the portal, when an agent logged it).
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

NO_RUN = '-'

# Record attributes copied into JSON output when present
_CONTEXT_FIELDS = ('run_id', 'portal')


class RunContextFilter(logging.Filter):
    """Default run_id on records logged outside a run so the text format never breaks."""

    def filter(self, record):
        if not getattr(record, 'run_id', None):
            record.run_id = NO_RUN
        return True


class RunLogAdapter(logging.LoggerAdapter):
    """Merges the run context into each call's extra; per-call keys win."""

    def process(self, msg, kwargs):
        kwargs['extra'] = {**self.extra, **(kwargs.get('extra') or {})}
        return msg, kwargs


def run_logger(logger, run_id, **context) -> RunLogAdapter:
    """Wrap a module logger so every record carries run_id plus any context (e.g. portal)."""
    if isinstance(logger, str):
        logger = logging.getLogger(logger)
    return RunLogAdapter(logger, {'run_id': run_id or NO_RUN, **context})


class JSONFormatter(logging.Formatter):
    """Single-line JSON log formatter for production log aggregators."""

    def format(self, record):
        entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        for name in _CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value and value != NO_RUN:
                entry[name] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry)


TEXT_FORMAT = '[%(asctime)s] %(levelname)s %(name)s [%(run_id)s] — %(message)s'

# Chatty at INFO: HTTP pools, the RQ worker loop, the Flask dev server
_NOISY_LOGGERS = [
    'urllib3',
    'rq.worker',
    'werkzeug',
    'asyncio',
]


def configure_logging(app=None):
    """
    Set up root logger with format/level from env vars.

    Environment variables:
        LOG_LEVEL  — Python log level name (default: INFO)
        LOG_FORMAT — "text" (default) or "json"
    """
    level = getattr(logging, os.getenv('LOG_LEVEL', 'INFO').upper(), logging.INFO)
    json_output = os.getenv('LOG_FORMAT', 'text').lower() == 'json'

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(RunContextFilter())
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))

    root = logging.getLogger()
    root.setLevel(level)
    # Re-init replaces the handler instead of stacking another one
    root.handlers.clear()
    root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    if app is not None:
        app.logger.handlers.clear()
        app.logger.propagate = True
