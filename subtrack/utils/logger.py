"""
subtrack/utils/logger.py
------------------------
ログ設定の一元化。各モジュールは `get_logger(__name__)` を使う。
"""

import logging
import sys

from subtrack.config import LOG_LEVEL

_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
_initialized = False


def _init_logging() -> None:
    global _initialized
    if _initialized:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, _DATE_FORMAT))
    root = logging.getLogger()
    root.setLevel(LOG_LEVEL)
    root.addHandler(handler)
    _initialized = True


def get_logger(name: str) -> logging.Logger:
    """名前付きロガーを返す（初回呼び出し時に root を設定）。"""
    _init_logging()
    return logging.getLogger(name)
