from __future__ import annotations

import logging

from rich.logging import RichHandler

# Attributes every LogRecord carries; anything else was passed through `extra=`.
_RESERVED_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}


class ExtraFieldsFormatter(logging.Formatter):
    """Append `extra=` context to the message as sorted key=value pairs."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        extras = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }
        if not extras:
            return message
        rendered = " ".join(f"{key}={extras[key]}" for key in sorted(extras))
        return f"{message} [{rendered}]"


def configure_logging(level: str = "INFO") -> None:
    handler = RichHandler(rich_tracebacks=True, show_path=False)
    handler.setFormatter(ExtraFieldsFormatter("%(name)s: %(message)s"))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level.upper())

    # websockets logs every frame at debug level
    logging.getLogger("websockets").setLevel(max(root.level, logging.INFO))
    logging.getLogger("httpx").setLevel(max(root.level, logging.WARNING))
