"""
@file logging_config.py
@brief Configurazione logging (console leggibile o righe JSON).
@ingroup config_module

@details
Da chiamare una sola volta all'avvio (CLI o app FastAPI).
"""

from __future__ import annotations
import json
import logging
from datetime import datetime, timezone

_EXTRA_FIELDS = ("quote_id", "quote_number", "template", "output_file", "kind")


class JSONFormatter(logging.Formatter):
    """Una riga JSON per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key in _EXTRA_FIELDS:
            if hasattr(record, key):
                entry[key] = getattr(record, key)
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """
    @brief Configura il root logger.
    @param level Livello (DEBUG, INFO, ...).
    @param json_logs True per output JSON (produzione), False per console.
    """
    handler = logging.StreamHandler()
    if json_logs:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", "%H:%M:%S"))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level.upper())
