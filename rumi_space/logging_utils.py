"""
logging_utils.py - "rumi.space" 名前空間の構造化ログ

各モジュールは get_structured_logger("rumi.space.<area>") でロガーを取り、
space 名・アドレス・状態などをキーワード引数で渡す。
値や鍵素材はログに出さない。

出力形式は json（既定）か text。configure_logging() を呼ぶまでは
標準の logging 設定（root ロガー）にそのまま流れる。
"""

from __future__ import annotations

import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "rumi.space"

_CORE_FIELDS = ("timestamp", "level", "module", "message")


def _utc_timestamp(created: float) -> str:
    return datetime.fromtimestamp(created, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class StructuredFormatter(logging.Formatter):
    """
    json:  {"timestamp", "level", "module", "message", <context...>, "exception"?}
    text:  <timestamp> [LEVEL] module - message [k=v ...]

    fmt_type を省略すると RUMI_SPACE_LOG_FORMAT を見る。
    """

    def __init__(self, fmt_type: Optional[str] = None) -> None:
        super().__init__()
        self.fmt_type = (fmt_type or os.environ.get("RUMI_SPACE_LOG_FORMAT") or "json").lower()

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        context = getattr(record, "context_data", None) or {}
        exc_text = self.formatException(record.exc_info) if record.exc_info and record.exc_info[1] else None

        if self.fmt_type == "text":
            line = f"{_utc_timestamp(record.created)} [{record.levelname}] {record.name} - {message}"
            if context:
                line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
            return line + ("\n" + exc_text if exc_text else "")

        entry: Dict[str, Any] = dict(zip(_CORE_FIELDS, (
            _utc_timestamp(record.created), record.levelname, record.name, message,
        )))
        # コアフィールドはコンテキストで上書きしない
        entry.update({k: v for k, v in context.items() if k not in entry})
        if exc_text:
            entry["exception"] = exc_text
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """
    logging.Logger の薄いラッパー。キーワード引数を context_data として渡す。

        log = get_structured_logger("rumi.space.lifecycle").bind(space="notes")
        log.info("Space opened", address=addr)
    """

    def __init__(self, name: str, **context: Any) -> None:
        self._logger = logging.getLogger(name)
        self._context = context

    def bind(self, **context: Any) -> "StructuredLogger":
        return StructuredLogger(self._logger.name, **{**self._context, **context})

    def _emit(self, level: int, msg: str, context: Dict[str, Any], exc_info: Any = None) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(
                level, msg, exc_info=exc_info,
                extra={"context_data": {**self._context, **context}},
            )

    def debug(self, msg: str, **context: Any) -> None:
        self._emit(logging.DEBUG, msg, context)

    def info(self, msg: str, **context: Any) -> None:
        self._emit(logging.INFO, msg, context)

    def warning(self, msg: str, **context: Any) -> None:
        self._emit(logging.WARNING, msg, context)

    def error(self, msg: str, exc_info: Any = None, **context: Any) -> None:
        self._emit(logging.ERROR, msg, context, exc_info=exc_info)


_loggers: Dict[str, StructuredLogger] = {}
_loggers_lock = threading.Lock()


def get_structured_logger(name: str) -> StructuredLogger:
    """name ごとにキャッシュした StructuredLogger を返す。"""
    with _loggers_lock:
        logger = _loggers.get(name)
        if logger is None:
            logger = _loggers[name] = StructuredLogger(name)
        return logger


def reset_logger_cache() -> None:
    with _loggers_lock:
        _loggers.clear()


_config_lock = threading.Lock()


def _drop_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def configure_logging(level: str = "INFO", fmt: str = "json", output: str = "stderr") -> None:
    """
    "rumi.space" ロガーにハンドラを 1 つだけ付ける。

    Args:
        level:  DEBUG / INFO / WARNING / ERROR / CRITICAL
        fmt:    "json" または "text"
        output: "stderr" またはファイルパス
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    handler: logging.Handler = (
        logging.StreamHandler(sys.stderr) if output == "stderr"
        else logging.FileHandler(output, encoding="utf-8")
    )
    handler.setFormatter(StructuredFormatter(fmt))

    with _config_lock:
        space_logger = logging.getLogger(ROOT_LOGGER_NAME)
        _drop_handlers(space_logger)
        space_logger.addHandler(handler)
        space_logger.setLevel(numeric_level)
        space_logger.propagate = False


def reset_configuration() -> None:
    """configure_logging() の設定を外す（テスト用）。"""
    with _config_lock:
        space_logger = logging.getLogger(ROOT_LOGGER_NAME)
        _drop_handlers(space_logger)
        space_logger.setLevel(logging.NOTSET)
        space_logger.propagate = True
