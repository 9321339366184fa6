"""
Logging do SteelPlanner

Mensagens de otimização carregam o contexto da tarefa via ``extra``
(``job_id``, ``group_key``, ``duration_ms``, ``diagnostic``). No formato texto
o ID da tarefa aparece em toda linha; no formato JSON todos os campos de
contexto presentes são emitidos.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

from . import config

CONTEXT_FIELDS = ("job_id", "group_key", "duration_ms", "diagnostic")

TEXT_FORMAT = "%(asctime)s [%(name)s] %(levelname)s [%(job_id)s]: %(message)s"

NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


class JobContextFilter(logging.Filter):
    """Garante ``job_id`` em todo registro, para o formato texto"""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "job_id", None) is None:
            record.job_id = "-"
        return True


class JSONFormatter(logging.Formatter):
    """Uma linha JSON por registro, com o contexto da tarefa"""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None)
            if value is not None and value != "-":
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, ensure_ascii=False)


def build_handler(json_output: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(JobContextFilter())
    handler.setFormatter(JSONFormatter() if json_output else logging.Formatter(TEXT_FORMAT))
    return handler


def setup_logging(level: Optional[str] = None, json_output: Optional[bool] = None) -> None:
    """
    Configura o logger raiz

    Args:
        level: Nível de log (padrão ``LOG_LEVEL``)
        json_output: Saída JSON (padrão ``LOG_JSON``)
    """
    level = level or config.LOG_LEVEL
    json_output = config.LOG_JSON if json_output is None else json_output

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers = [build_handler(json_output)]

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
