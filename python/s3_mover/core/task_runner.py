"""転送タスクの実行"""
import os
import posixpath
import threading
from typing import Callable, Dict, Optional, Tuple

from ..models.config import Config, TransferOptions, TransferTask
from ..models.results import JobResult
from ..utils.logger import LoggerManager
from ..utils.progress import ProgressTracker
from .client import StorageClient, split_source
from .dispatcher import call_with_retry
from .multipart import MultipartEngine
from .prefix import PrefixTransfer
from .s3_client import S3ClientManager
from .transfer import TransferConfigManager


class TaskRunner:
    """設定ファイルのタスクを順に実行"""

    def __init__(self, config: Config, cancel_event: Optional[threading.Event] = None,
                 clients: Optional[Dict[str, StorageClient]] = None):
        self.config = config
        self.cancel_event = cancel_event or threading.Event()
        self.logger = LoggerManager.get_logger()
        self._clients: Dict[str, StorageClient] = dict(clients or {})
        self._managers: Dict[str, S3ClientManager] = {}

        self._handlers: Dict[str, Callable[[TransferTask, TransferOptions, ProgressTracker], bool]] = {
            "upload": self._upload,
            "upload_dir": self._upload_dir,
            "download": self._download,
            "download_prefix": self._download_prefix,
            "copy": self._copy,
            "copy_prefix": self._copy_prefix,
            "move_prefix": self._move_prefix,
            "delete": self._delete,
            "delete_prefix": self._delete_prefix,
            "sync": self._sync,
            "sync_prefix": self._sync_prefix,
            "clean_uploads": self._clean_uploads,
        }

    def get_client(self, name: str) -> StorageClient:
        """エンドポイント名からクライアントを取得（必要に応じて作成）"""
        if name not in self._clients:
            manager = S3ClientManager(self.config.endpoints[name], name)
            self._managers[name] = manager
            self._clients[name] = manager.get_client()
        return self._clients[name]

    def close(self):
        for manager in self._managers.values():
            manager.close()

    def run_all_tasks(self) -> Tuple[int, int]:
        """全てのタスクを実行"""
        total_tasks = len(self.config.tasks)
        successful_tasks = 0
        failed_tasks = 0

        self.logger.info(f"Starting tasks: {total_tasks} tasks to process")

        for i, task in enumerate(self.config.tasks, 1):
            if not task.enabled:
                self.logger.info(f"Skipping disabled task: {task.name}")
                continue
            if self.cancel_event.is_set():
                self.logger.warning(f"Canceled before task: {task.name}")
                failed_tasks += 1
                continue

            self.logger.info(f"Task {i}/{total_tasks}: Starting '{task.name}' ({task.operation})")

            try:
                success = self._run_single_task(task)
                if success:
                    successful_tasks += 1
                    self.logger.info(f"Task {i}/{total_tasks}: '{task.name}' completed successfully")
                else:
                    failed_tasks += 1
                    self.logger.error(f"Task {i}/{total_tasks}: '{task.name}' failed")
            except Exception as e:
                failed_tasks += 1
                self.logger.error(f"Task {i}/{total_tasks}: '{task.name}' failed with error: {e}")

        self.logger.info(
            f"Tasks completed: {successful_tasks} successful, {failed_tasks} failed"
        )
        return successful_tasks, failed_tasks

    def _run_single_task(self, task: TransferTask) -> bool:
        """単一タスクを実行"""
        options = self.config.options.merged(task.options)
        tracker = ProgressTracker(task.name, enabled=options.enable_progress)
        success = self._handlers[task.operation](task, options, tracker)
        if success:
            tracker.complete()
        return success

    def _require(self, task: TransferTask, *names: str) -> bool:
        missing = [name for name in names if not getattr(task, name)]
        if missing:
            self.logger.error(f"{', '.join(missing)} required for {task.operation}: {task.name}")
            return False
        return True

    def _retry(self, options: TransferOptions, fn, description: str):
        return call_with_retry(fn, options.max_retries, self.cancel_event, description)

    def _engine(self, task: TransferTask, options: TransferOptions,
                tracker: ProgressTracker) -> MultipartEngine:
        return MultipartEngine(self.get_client(task.endpoint), options, self.cancel_event, tracker)

    def _prefix(self, task: TransferTask, options: TransferOptions,
                tracker: ProgressTracker) -> PrefixTransfer:
        return PrefixTransfer(self.get_client(task.endpoint), options, self.cancel_event, tracker)

    def _report(self, task: TransferTask, job: JobResult) -> bool:
        if not job.success:
            self.logger.error(f"{task.name}: {job.error}")
        return job.success

    # ---- 単一オブジェクト ----

    def _upload(self, task, options, tracker) -> bool:
        if not self._require(task, "source", "bucket"):
            return False
        if not os.path.isfile(task.source):
            self.logger.error(f"Source is not a file: {task.source}")
            return False

        client = self.get_client(task.endpoint)
        size = os.path.getsize(task.source)
        if size > options.multipart_threshold:
            result = self._engine(task, options, tracker).upload_large_file(
                task.source, task.bucket, task.key or ""
            )
        else:
            result = self._retry(
                options,
                lambda: client.put_file(task.source, task.bucket, task.key or "",
                                        acl=options.acl, disposition=options.disposition),
                f"Put {task.source}",
            )
        self.logger.info(f"Successfully uploaded {task.source} to {result.location}")
        return True

    def _download(self, task, options, tracker) -> bool:
        if not self._require(task, "bucket", "key", "local_path"):
            return False
        local_file = task.local_path
        if local_file.endswith(("/", os.sep)) or os.path.isdir(local_file):
            local_file = os.path.join(local_file, posixpath.basename(task.key))
        head = self._engine(task, options, tracker).download_file(task.bucket, task.key, local_file)
        self.logger.info(f"Successfully downloaded {task.bucket}/{task.key} ({head.size} bytes) to {local_file}")
        return True

    def _copy(self, task, options, tracker) -> bool:
        if not self._require(task, "source", "bucket"):
            return False
        client = self.get_client(task.endpoint)
        source_bucket, source_key = split_source(task.source)
        head = self._retry(options, lambda: client.head(source_bucket, source_key),
                           f"Head {task.source}")
        if head.size > TransferConfigManager.part_size(options):
            result = self._engine(task, options, tracker).copy_large_file(
                task.bucket, task.key or "", task.source
            )
        else:
            result = self._retry(
                options,
                lambda: client.copy(task.bucket, task.key or "", task.source, acl=options.acl),
                f"Copy {task.source}",
            )
        self.logger.info(f"Successfully copied {task.source} to {result.location}")
        return True

    def _delete(self, task, options, tracker) -> bool:
        if not self._require(task, "bucket", "key"):
            return False
        client = self.get_client(task.endpoint)
        self._retry(options, lambda: client.delete(task.bucket, task.key), f"Delete {task.key}")
        self.logger.info(f"Successfully deleted {task.bucket}/{task.key}")
        return True

    def _sync(self, task, options, tracker) -> bool:
        if not self._require(task, "source", "bucket"):
            return False
        client = self.get_client(task.endpoint)
        dest_client = self.get_client(task.target_endpoint)
        source_bucket, source_key = split_source(task.source)
        head = self._retry(options, lambda: client.head(source_bucket, source_key),
                           f"Head {task.source}")
        if head.size > TransferConfigManager.part_size(options):
            result = self._engine(task, options, tracker).sync_large_file(
                dest_client, task.bucket, task.key or "", task.source, source_meta=head
            )
        else:
            body = self._retry(options, lambda: client.get_object(source_bucket, source_key),
                               f"Get {task.source}")
            key = task.key or posixpath.basename(source_key)
            if key.endswith("/"):
                key += posixpath.basename(source_key)
            result = self._retry(
                options,
                lambda: dest_client.put(body, task.bucket, key, acl=options.acl,
                                        disposition=head.disposition or options.disposition),
                f"Put {key}",
            )
        self.logger.info(f"Successfully synced {task.source} to {result.location}")
        return True

    # ---- プレフィックス単位 ----

    def _upload_dir(self, task, options, tracker) -> bool:
        if not self._require(task, "source", "bucket"):
            return False
        if not os.path.isdir(task.source):
            self.logger.error(f"Source is not a directory: {task.source}")
            return False
        job = self._prefix(task, options, tracker).upload_from_dir(
            task.source, task.bucket, task.prefix or ""
        )
        return self._report(task, job)

    def _download_prefix(self, task, options, tracker) -> bool:
        if not self._require(task, "bucket", "local_path"):
            return False
        job = self._prefix(task, options, tracker).download_all_objects(
            task.bucket, task.prefix or "", task.local_path
        )
        return self._report(task, job)

    def _copy_prefix(self, task, options, tracker) -> bool:
        if not self._require(task, "source", "bucket"):
            return False
        job = self._prefix(task, options, tracker).copy_all_objects(
            task.bucket, task.prefix or "", task.source
        )
        return self._report(task, job)

    def _move_prefix(self, task, options, tracker) -> bool:
        if not self._require(task, "source", "bucket"):
            return False
        job = self._prefix(task, options, tracker).move_all_objects(
            task.bucket, task.prefix or "", task.source
        )
        return self._report(task, job)

    def _delete_prefix(self, task, options, tracker) -> bool:
        if not self._require(task, "bucket"):
            return False
        job = self._prefix(task, options, tracker).delete_all_objects(task.bucket, task.prefix or "")
        return self._report(task, job)

    def _sync_prefix(self, task, options, tracker) -> bool:
        if not self._require(task, "source", "bucket"):
            return False
        job = self._prefix(task, options, tracker).sync_all_objects(
            self.get_client(task.target_endpoint), task.bucket, task.prefix or "", task.source
        )
        return self._report(task, job)

    def _clean_uploads(self, task, options, tracker) -> bool:
        if not self._require(task, "bucket"):
            return False
        job = self._prefix(task, options, tracker).delete_all_parts(task.bucket, task.prefix or "")
        return self._report(task, job)
