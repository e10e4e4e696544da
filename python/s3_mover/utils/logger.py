"""ロギング設定ユーティリティ"""
import logging
import os
from typing import Optional, List
from ..models.config import LoggingConfig

LOGGER_NAME = "s3_mover"


class LoggerManager:
    """ロガーの設定と管理"""

    _logger: Optional[logging.Logger] = None

    @classmethod
    def setup(cls, config: LoggingConfig) -> logging.Logger:
        """ロガーをセットアップ（2回目以降は既存のロガーを返す）"""
        if cls._logger is not None:
            return cls._logger

        log_level = getattr(logging, config.level.upper(), logging.INFO)
        formatter = logging.Formatter(config.format, datefmt="%Y-%m-%d %H:%M:%S")
        handlers: List[logging.Handler] = []

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        handlers.append(console_handler)

        # ファイルハンドラー（設定されている場合）
        if config.file:
            log_dir = os.path.dirname(config.file)
            if log_dir:
                os.makedirs(log_dir, exist_ok=True)
            file_handler = logging.FileHandler(config.file, encoding="utf-8")
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(log_level)
        logger.handlers = handlers

        cls._logger = logger
        return logger

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """設定済みのロガーを取得"""
        if cls._logger is None:
            raise RuntimeError("Logger not initialized. Call setup() first.")
        return cls._logger

    @classmethod
    def reset(cls):
        """ハンドラーを閉じて未設定の状態に戻す"""
        if cls._logger is not None:
            for handler in cls._logger.handlers:
                handler.close()
            cls._logger.handlers = []
        cls._logger = None
