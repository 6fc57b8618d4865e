import logging
import re
import sys

from subscriptn.config import get_settings

# Patterns that may contain sensitive data
_SENSITIVE_PATTERN = re.compile(
    r'(password|passwd|secret|token|api_key|apikey|authorization|cookie|session)'
    r'\s*[=:]\s*[^\s&,]+',
    re.IGNORECASE
)
_NWC_URI_PATTERN = re.compile(r'nostr\+walletconnect://\S+', re.IGNORECASE)


def redact(message: str) -> str:
    """Mask credentials and wallet-connect URIs in a log line."""
    message = _NWC_URI_PATTERN.sub("nostr+walletconnect://***REDACTED***", message)
    return _SENSITIVE_PATTERN.sub(
        lambda m: re.split(r'\s*[=:]', m.group(), maxsplit=1)[0] + '=***REDACTED***',
        message
    )


class SensitiveDataFilter(logging.Filter):
    """Filter that redacts sensitive data from log messages."""
    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact(record.msg)
        return True


def setup_logging():
    """Configure application logging"""
    settings = get_settings()

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s:%(lineno)d | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    console_handler.setFormatter(formatter)
    console_handler.addFilter(SensitiveDataFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.addHandler(console_handler)

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("apscheduler").setLevel(logging.WARNING)

    logging.info(f"Logging configured: level={settings.log_level}")
