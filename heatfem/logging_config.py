"""ログ設定.

heatfem 名前空間のロガーにコンソール（stdout）と任意のファイルハンドラを設定する。
各モジュールは logging.getLogger(__name__) でこの名前空間の子ロガーを使う。
"""

from __future__ import annotations

import logging
import sys

PACKAGE_LOGGER = "heatfem"

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%H:%M:%S"

LOG_LEVELS: dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def parse_log_level(text: str) -> int | None:
    """ログレベル名（大文字小文字を区別しない）→ logging の数値レベル。未知の名前は None."""
    return LOG_LEVELS.get(text.strip().lower())


def setup_logging(level: int = logging.INFO, log_file: str | None = None) -> logging.Logger:
    """heatfem 名前空間のロガーを設定する.

    再設定時は既存ハンドラを外してから付け直す（ログの重複防止）。

    Args:
        level: ログレベル（logging.DEBUG, logging.INFO 等）
        log_file: ログファイルのパス（None の場合はコンソールのみ）

    Returns:
        設定済みの heatfem ロガー
    """
    logger = logging.getLogger(PACKAGE_LOGGER)
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, mode="w", encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.debug("Logging initialized (level=%s)", logging.getLevelName(level))
    return logger


__all__ = ["setup_logging", "parse_log_level", "LOG_LEVELS", "PACKAGE_LOGGER"]
