"""S3 Mover パッケージ"""
import threading
from typing import Optional, Tuple
from .models.config import Config
from .utils.logger import LoggerManager
from .core.task_runner import TaskRunner


class S3Mover:
    """S3互換ストレージ転送ツールのメインクラス"""

    def __init__(self, config_path: str = "config.json",
                 cancel_event: Optional[threading.Event] = None):
        # 設定を読み込み
        self.config = Config.from_file(config_path)

        # ロガーをセットアップ
        self.logger = LoggerManager.setup(self.config.logging)
        self.logger.info("S3 Mover initialized")

        # タスクランナーを作成
        self.task_runner = TaskRunner(self.config, cancel_event)

    def run(self) -> Tuple[int, int]:
        """転送タスクを実行"""
        self.logger.info("Starting S3 transfer process...")
        try:
            return self.task_runner.run_all_tasks()
        finally:
            self.task_runner.close()


__all__ = ['S3Mover', 'Config']
