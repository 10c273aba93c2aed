import os
import re
import json
import datetime as dt
import logging
from logging.handlers import TimedRotatingFileHandler
from jsonschema import validate, Draft202012Validator
from jsonschema.exceptions import ValidationError
from email.utils import parsedate_to_datetime
from typing import Optional, Any
from pydantic import TypeAdapter, HttpUrl

from geoload.errors import ConfigError

# ---------- Time helpers ----------

def parse_datetime_safe(raw: str) -> Optional[dt.datetime]:
    """Best-effort parsing for date values found in feature properties.

    Returns a timezone-aware UTC datetime on success, otherwise ``None``.
    """

    if not raw:
        return None

    raw = raw.strip()

    # Fast path: ISO 8601 (with optional trailing Z and fractional seconds)
    iso_candidate = raw
    if raw.endswith("Z"):
        iso_candidate = raw[:-1] + "+00:00"

    try:
        dt_obj = dt.datetime.fromisoformat(iso_candidate)
        if dt_obj.tzinfo is None:
            dt_obj = dt_obj.replace(tzinfo=dt.timezone.utc)
        return dt_obj.astimezone(dt.timezone.utc)
    except ValueError:
        pass

    # RFC 2822 / email style timestamps
    try:
        dt_obj = parsedate_to_datetime(raw)
        if dt_obj:
            if dt_obj.tzinfo is None:
                dt_obj = dt_obj.replace(tzinfo=dt.timezone.utc)
            return dt_obj.astimezone(dt.timezone.utc)
    except (TypeError, ValueError):
        pass

    # Common spreadsheet exports
    for fmt in ("%Y-%m-%d %H:%M:%S%z", "%m/%d/%Y %H:%M:%S", "%m/%d/%Y", "%Y/%m/%d"):
        try:
            dt_obj = dt.datetime.strptime(raw, fmt)
            if dt_obj.tzinfo is None:
                dt_obj = dt_obj.replace(tzinfo=dt.timezone.utc)
            return dt_obj.astimezone(dt.timezone.utc)
        except ValueError:
            continue

    return None

def from_epoch_millis(value: float) -> Optional[dt.datetime]:
    try:
        return dt.datetime.fromtimestamp(float(value) / 1000.0, tz=dt.timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None

def to_epoch_millis(value: dt.datetime) -> int:
    return int(value.timestamp() * 1000)

# ---------- URL helpers ----------

_HTTP_URL_ADAPTER = TypeAdapter(HttpUrl)

def normalize_http_url(value: Any) -> Optional[str]:
    """Try to normalize a value into a valid http(s) URL string.

    - Trims whitespace and trailing slashes
    - Adds scheme when missing (defaults to https://)
    - Supports protocol-relative form (//example.com)
    Returns normalized string on success; otherwise None.
    """
    if value is None:
        return None
    s = str(value).strip()
    if not s:
        return None
    if s.startswith("//"):
        s = "https:" + s
    # If no scheme present, assume https
    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", s):
        s = "https://" + s
    try:
        _HTTP_URL_ADAPTER.validate_python(s)
        return s.rstrip("/")
    except Exception:
        return None

# ---------- Config validation ----------

def load_file(path: str) -> str:
    with open(path, "r", encoding="utf-8") as f:
        return f.read()

def load_schema(name: str) -> dict:
    here = os.path.dirname(os.path.abspath(__file__))
    return json.loads(load_file(os.path.join(here, "schemas", name)))

def validate_config(cfg: dict):
    schema = load_schema("config.schema.json")
    try:
        validate(instance=cfg, schema=schema, cls=Draft202012Validator)
    except ValidationError as e:
        raise ConfigError(f"Config validation error: {e.message} at {list(e.path)}") from e

# ---------- Logging ----------

_LOGGER_INITIALIZED = False

class JsonFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": dt.datetime.fromtimestamp(record.created, tz=dt.timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)

def _build_logger():
    global _LOGGER_INITIALIZED
    if _LOGGER_INITIALIZED:
        return

    level = os.getenv("LOG_LEVEL", "INFO").upper()
    # Empty LOG_DIR keeps logging on the console only
    log_dir = os.getenv("LOG_DIR", "logs")
    json_mode = os.getenv("LOG_JSON", "false").lower() == "true"

    logger = logging.getLogger()
    logger.setLevel(getattr(logging, level, logging.INFO))

    if json_mode:
        fmt = JsonFormatter()
    else:
        fmt = logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")

    ch = logging.StreamHandler()
    ch.setLevel(logger.level)
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        fh = TimedRotatingFileHandler(os.path.join(log_dir, "geoload.log"), when="D", backupCount=7, encoding="utf-8")
        fh.setLevel(logger.level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    _LOGGER_INITIALIZED = True

def get_logger(name: str = None) -> logging.Logger:
    _build_logger()
    return logging.getLogger(name if name else __name__)

# ---------- Secret redaction ----------

def redact_secrets(s: str) -> str:
    """Redact tokens from strings for safe logging."""
    if not s:
        return s

    redacted = s
    v = os.getenv("XYZ_TOKEN")
    if v and len(v) > 3:
        redacted = redacted.replace(v, "***")

    pattern_flags = re.IGNORECASE
    redacted = re.sub(r"(access_token=)([^\s&]+)", r"\1***", redacted, flags=pattern_flags)
    redacted = re.sub(r"(token=)([^\s&]+)", r"\1***", redacted, flags=pattern_flags)
    redacted = re.sub(r"(bearer\s+)[A-Za-z0-9._-]+", r"\1***", redacted, flags=pattern_flags)

    return redacted
