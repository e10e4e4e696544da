"""並列数を制限したタスク実行（リトライ + fail-fast）"""
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, Optional, TypeVar

from ..models.config import MAX_RETRY_NUM, THREAD_MAX_NUM, THREAD_MIN_NUM
from ..models.results import JobResult, JobStats, TaskOutcome
from ..utils.logger import LoggerManager
from .errors import CancellationError, StorageError
from .transfer import DEFAULT_THREAD_NUM, clamp

T = TypeVar("T")
R = TypeVar("R")

ProgressCallback = Callable[[int, int], None]


def call_with_retry(fn: Callable[[], R], max_retries: int = MAX_RETRY_NUM,
                    cancel_event: Optional[threading.Event] = None,
                    description: str = "task") -> R:
    """fn を最大 max_retries 回試行する（待機なし）

    リトライ対象は retryable な StorageError のみ。
    各試行の前に中断シグナルを確認する。
    """
    logger = LoggerManager.get_logger()
    attempts = max(1, max_retries)
    for attempt in range(1, attempts + 1):
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError()
        try:
            return fn()
        except StorageError as e:
            if not e.retryable or attempt >= attempts:
                raise
            logger.warning(f"{description} failed (attempt {attempt}/{attempts}), retrying: {e}")
    raise AssertionError("unreachable")


class BoundedDispatcher:
    """N個のタスクを最大K並列で実行"""

    def __init__(self, thread_num: Optional[int] = None, max_retries: int = MAX_RETRY_NUM,
                 cancel_event: Optional[threading.Event] = None,
                 progress: Optional[ProgressCallback] = None,
                 thread_min: int = THREAD_MIN_NUM, thread_max: int = THREAD_MAX_NUM):
        self.thread_num = thread_num if thread_num is not None else DEFAULT_THREAD_NUM
        self.max_retries = max_retries
        self.cancel_event = cancel_event
        self.progress = progress
        self.thread_min = thread_min
        self.thread_max = thread_max
        self.logger = LoggerManager.get_logger()

    def concurrency(self, task_count: int) -> int:
        value = clamp(self.thread_num, self.thread_min, self.thread_max)
        return clamp(value, 1, max(task_count, 1))

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def run(self, items: Iterable[T], worker: Callable[[T], Optional[TaskOutcome]],
            max_retries: Optional[int] = None, stats: Optional[JobStats] = None,
            description: Callable[[T], str] = str) -> JobResult:
        """全タスクを実行して結果を返す

        Args:
            items: タスク記述子
            worker: 1タスクを処理する関数（TaskOutcome を返す）
            max_retries: タスクごとの試行回数（省略時はインスタンスの設定）
            stats: 共有する集計（ページをまたぐ場合に渡す）

        Returns:
            JobResult（失敗時は最初のエラーを error に保持）
        """
        items = list(items)
        stats = stats if stats is not None else JobStats()
        stats.add_total(len(items))
        if not items:
            return JobResult.from_stats(stats)

        retries = self.max_retries if max_retries is None else max_retries
        workers = self.concurrency(len(items))
        slots = threading.BoundedSemaphore(workers)
        abort = threading.Event()
        first_error = []
        error_lock = threading.Lock()

        def fail(error: BaseException):
            with error_lock:
                if not first_error:
                    first_error.append(error)
            abort.set()

        def execute(item: T):
            try:
                outcome = call_with_retry(
                    lambda: worker(item), retries, self.cancel_event, description(item)
                ) or TaskOutcome()
                if outcome.skipped:
                    stats.add_skipped()
                    return
                completed = stats.add_finished(outcome.size)
                if self.progress:
                    self.progress(completed, stats.total)
            except Exception as e:
                if not isinstance(e, CancellationError):
                    self.logger.error(f"{description(item)} failed: {e}")
                fail(e)
            finally:
                slots.release()

        with ThreadPoolExecutor(max_workers=workers) as pool:
            for item in items:
                slots.acquire()
                if abort.is_set():
                    slots.release()
                    break
                if self._cancelled():
                    slots.release()
                    fail(CancellationError())
                    break
                pool.submit(execute, item)

        return JobResult.from_stats(stats, first_error[0] if first_error else None)
