import logging, json, os, uuid
from logging.handlers import RotatingFileHandler
from contextvars import ContextVar

from config import redacted

# Correlation id for the current HTTP request or job run
REQUEST_ID_CTX: ContextVar[str | None] = ContextVar('request_id', default=None)

LOG_DIR = os.environ.get('LOG_DIR', 'logs')
LOG_FILE = os.path.join(LOG_DIR, 'xray.log')

# LogRecord attributes that are not structured extras
_RESERVED = set(vars(logging.LogRecord('', 0, '', 0, '', None, None))) | {'message', 'asctime', 'correlation_id'}


def new_correlation_id(prefix: str = 'req') -> str:
    return f'{prefix}-{uuid.uuid4().hex[:12]}'


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        # Attach even if None for uniformity
        record.correlation_id = REQUEST_ID_CTX.get()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        base = {
            'ts': self.formatTime(record, datefmt='%Y-%m-%dT%H:%M:%S'),
            'level': record.levelname,
            'msg': record.getMessage(),
            'logger': record.name,
            'correlation_id': getattr(record, 'correlation_id', None),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and key not in base:
                base[key] = value
        if record.exc_info:
            base['exc_info'] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


def setup_logging(level=logging.INFO):
    root = logging.getLogger()
    root.setLevel(level)
    # Clear existing handlers to avoid duplicate logs in reloads
    root.handlers = []
    use_json = os.environ.get('LOG_FORMAT', '').lower() == 'json'
    if use_json:
        fmt = JsonFormatter()
    else:
        fmt = logging.Formatter('%(asctime)s - %(levelname)s - %(correlation_id)s - %(name)s - %(message)s')
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.addFilter(CorrelationIdFilter())
    root.addHandler(ch)
    # Rotating file handler (5 MB, keep 3 backups)
    try:
        os.makedirs(LOG_DIR, exist_ok=True)
        fh = RotatingFileHandler(LOG_FILE, maxBytes=5 * 1024 * 1024, backupCount=3)
        fh.setFormatter(fmt)
        fh.addFilter(CorrelationIdFilter())
        root.addHandler(fh)
    except OSError:
        root.warning('Could not attach rotating file handler; continuing with console only')
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)


def log_config(config=None):
    """Log the effective configuration once at startup, secrets masked."""
    if config is None:
        config = redacted()
    logger = logging.getLogger('xray.config')
    unset = sorted(k for k, v in config.items() if v in ('', '(unset)', None))
    logger.info('config.loaded', extra={'event': 'config_loaded', 'settings': len(config), 'unset': unset})
    for key in sorted(config):
        logger.debug(f"{key}: {config[key]}")
