# cargohold/logging_config.py

import logging
import re
import sys

logger = logging.getLogger("cargohold")

REDACTED = "[REDACTED]"

SENSITIVE_KEYS = (
    "token",
    "access_token",
    "refresh_token",
    "id_token",
    "authorization",
    "session_id",
    "sessionid",
    "secret",
    "client_secret",
    "password",
    "access_key",
    "secret_key",
    "signature",
)

_BEARER_RE = re.compile(r"(?i)\b(bearer|basic)\s+[A-Za-z0-9\-._~+/=]+")
_KEY_VALUE_RE = re.compile(
    r"(?i)\b(" + "|".join(re.escape(key) for key in SENSITIVE_KEYS) + r")(\s*[=:]\s*)(\"[^\"]*\"|'[^']*'|[^\s,&;]+)"
)


def mask_sensitive(text: str) -> str:
    """Masks bearer credentials and `key=value` pairs whose key is sensitive."""
    text = _BEARER_RE.sub(lambda m: f"{m.group(1)} {REDACTED}", text)
    return _KEY_VALUE_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}{REDACTED}", text)


def mask_mapping(data):
    if not isinstance(data, dict):
        return data
    masked = {}
    for key, value in data.items():
        if isinstance(key, str) and key.lower() in SENSITIVE_KEYS:
            masked[key] = REDACTED
        elif isinstance(value, dict):
            masked[key] = mask_mapping(value)
        else:
            masked[key] = value
    return masked


class SensitiveDataFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = mask_mapping(record.args)
        message = record.getMessage()
        masked = mask_sensitive(message)
        if masked != message:
            record.msg = masked
            record.args = ()
        return True


def setup_logging(config=None):
    """
    Configures the root logger for the application.
    Django calls this ONCE at startup through the LOGGING_CONFIG setting.
    """
    config = config or {}
    logging.basicConfig(
        level=config.get("level", "INFO"),
        format="%(asctime)s - %(name)s - [%(levelname)s] - %(message)s",
        stream=sys.stdout,
    )
    sensitive_filter = SensitiveDataFilter()
    for handler in logging.getLogger().handlers:
        handler.addFilter(sensitive_filter)

    # Silence noisy libraries
    for noisy in ("botocore", "boto3", "s3transfer", "urllib3", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
