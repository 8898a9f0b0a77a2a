import logging
import json
import sys

_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}
_EXC_FORMATTER = logging.Formatter()


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        d = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "lvl": record.levelname,
            "msg": record.getMessage(),
            "logger": record.name,
        }
        # carry structured context passed via extra={...}
        for k, v in record.__dict__.items():
            if k not in _RESERVED and not k.startswith("_"):
                d[k] = v
        if record.exc_info:
            d["exc"] = record.exc_text or self.formatException(record.exc_info)
        return json.dumps(d, ensure_ascii=False, default=str)


class SecretRedactionFilter(logging.Filter):
    """Mask a secret wherever a formatted record could show it."""

    def __init__(self, secret: str, mask: str = "***"):
        super().__init__()
        self._secret = secret
        self._mask = mask

    def _scrub(self, value: str) -> str:
        return value.replace(self._secret, self._mask)

    def filter(self, record: logging.LogRecord) -> bool:
        if not self._secret:
            return True
        msg = record.getMessage()
        if self._secret in msg:
            record.msg = self._scrub(msg)
            record.args = None
        if record.exc_info and not record.exc_text:
            record.exc_text = _EXC_FORMATTER.formatException(record.exc_info)
        if record.exc_text:
            record.exc_text = self._scrub(record.exc_text)
        # extra={...} fields
        for k, v in list(record.__dict__.items()):
            if k not in _RESERVED and isinstance(v, str) and self._secret in v:
                setattr(record, k, self._scrub(v))
        return True


def configure_logging(level: str = "INFO", fmt: str = "text") -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level.upper())
    return handler


def redact_secret(handler: logging.Handler, secret: str) -> None:
    handler.addFilter(SecretRedactionFilter(secret))
