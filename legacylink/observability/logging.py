"""Structured logging setup."""
import logging, sys, json, time
from typing import Any, Mapping

from legacylink.schemas.session import LogEvent

PIPELINE_LOGGER = 'legacylink.pipeline'

# operator-facing severities onto stdlib levels
SEVERITY_LEVELS = {'info': logging.INFO, 'success': logging.INFO, 'thinking': logging.INFO, 'error': logging.ERROR}

class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base: dict[str, Any] = {
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'time': int(time.time()*1000)
        }
        if record.exc_info:
            base['exc_info'] = self.formatException(record.exc_info)
        if hasattr(record, 'extra_data') and isinstance(record.extra_data, Mapping):
            base.update(record.extra_data)  # type: ignore
        return json.dumps(base, default=str)

def configure_logging(level: str | int = 'INFO', stream=None):
    root = logging.getLogger()
    if not any(isinstance(h.formatter, JsonFormatter) for h in root.handlers):
        h = logging.StreamHandler(stream or sys.stdout)
        h.setFormatter(JsonFormatter())
        root.addHandler(h)
    root.setLevel(level)
    # request-level chatter from the model client
    for noisy in ('httpx', 'openai'):
        logging.getLogger(noisy).setLevel(logging.WARNING)

def log_pipeline_event(event: LogEvent, logger: logging.Logger | None = None):
    """Mirror an operator-facing pipeline event into the structured log."""
    (logger or logging.getLogger(PIPELINE_LOGGER)).log(SEVERITY_LEVELS[event.severity], event.message, extra={'extra_data': {
        'seq': event.seq, 'session_id': event.session_id, 'unit_id': event.unit_id,
        'scope': event.scope, 'severity': event.severity,
    }})
