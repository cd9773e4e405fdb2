"""Process-wide ``chatrelay`` logger: stderr always, a rotating file when configured."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from chatrelay.config.settings import settings

_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _normalize_level(raw: str) -> int:
    candidate = str(raw or "INFO").strip().upper()
    level = logging.getLevelName(candidate)
    return level if isinstance(level, int) else logging.INFO


def _file_handler(raw_path: str, level: int, formatter: logging.Formatter) -> logging.Handler | None:
    path_text = (raw_path or "").strip()
    if not path_text:
        return None
    path = Path(path_text)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            path,
            maxBytes=max(1, int(settings.log_file_max_bytes)),
            backupCount=max(0, int(settings.log_file_backup_count)),
            encoding="utf-8",
        )
    except OSError as exc:
        # 只读文件系统（Serverless/容器）下仅输出到 stderr
        logging.getLogger("chatrelay").warning("file logging disabled path=%s error=%s", path, exc)
        return None
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _build_logger() -> logging.Logger:
    configured_logger = logging.getLogger("chatrelay")
    if configured_logger.handlers:
        return configured_logger

    level = _normalize_level(settings.log_level)
    configured_logger.setLevel(level)
    configured_logger.propagate = False
    formatter = logging.Formatter(_FORMAT, datefmt=_DATE_FORMAT)

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    configured_logger.addHandler(stream_handler)

    file_handler = _file_handler(settings.log_file, level, formatter)
    if file_handler is not None:
        configured_logger.addHandler(file_handler)
    return configured_logger


logger = _build_logger()
