"""転送進捗の表示"""
import time
import threading


class ProgressTracker:
    """ジョブ単位の進捗を表示（ディスパッチャーのコールバックとして使用）"""

    def __init__(self, label: str, enabled: bool = True):
        self.label = label
        self.enabled = enabled
        self.completed = 0
        self.total = 0
        self.lock = threading.Lock()
        self.start_time = time.time()

    def __call__(self, completed: int, total: int):
        with self.lock:
            self.completed = max(self.completed, completed)
            self.total = max(self.total, total)
            self._display_progress()

    def _display_progress(self):
        if not self.enabled or self.total == 0:
            return

        progress = (self.completed / self.total) * 100
        elapsed_time = time.time() - self.start_time
        print(f"\r{self.label}: {progress:.1f}% ({self.completed}/{self.total}) "
              f"- {elapsed_time:.0f}s", end="", flush=True)

    def complete(self):
        if not self.enabled:
            return
        elapsed_time = time.time() - self.start_time
        print(f"\r{self.label}: Complete! ({self.completed}/{self.total}) - {elapsed_time:.1f}s")
