"""プレフィックス単位の一括転送と同期"""
import os
import posixpath
import threading
from datetime import datetime
from typing import Callable, List, Optional, Union

from ..models.config import TransferOptions
from ..models.results import JobResult, JobStats, ObjectEntry, ObjectMeta, TaskOutcome, UploadEntry
from ..utils.file_utils import FileScanner
from ..utils.logger import LoggerManager
from .client import StorageClient, split_source
from .dispatcher import BoundedDispatcher, ProgressCallback, call_with_retry
from .errors import ProtocolError, StorageError
from .listing import ListingCursor
from .multipart import MultipartEngine
from .transfer import TransferConfigManager

Timestamp = Union[datetime, float, int, None]


def _epoch_seconds(value: Timestamp) -> int:
    if value is None:
        return 0
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


def should_skip(src_size: int, src_mtime: Timestamp, dst_size: int, dst_mtime: Timestamp) -> bool:
    """サイズが一致し、転送先の更新時刻が転送元以降ならスキップ（秒単位で比較）"""
    if src_size != dst_size:
        return False
    return _epoch_seconds(dst_mtime) >= _epoch_seconds(src_mtime)


def normalize_prefix(prefix: Optional[str]) -> str:
    if not prefix:
        return ""
    return prefix.rstrip("/") + "/"


class PrefixTransfer:
    """ページ単位で一覧を取得し、各オブジェクトを並列に処理する"""

    def __init__(self, client: StorageClient, options: Optional[TransferOptions] = None,
                 cancel_event: Optional[threading.Event] = None,
                 progress: Optional[ProgressCallback] = None):
        self.client = client
        self.options = options or TransferOptions()
        self.cancel_event = cancel_event
        self.progress = progress
        self.logger = LoggerManager.get_logger()
        self.engine = MultipartEngine(client, self.options, cancel_event)

    def _dispatcher(self) -> BoundedDispatcher:
        return BoundedDispatcher(
            TransferConfigManager.thread_num(self.options),
            self.options.max_retries,
            self.cancel_event,
            self.progress,
        )

    def _retry(self, fn, description: str):
        return call_with_retry(fn, self.options.max_retries, self.cancel_event, description)

    def _head_destination(self, client: StorageClient, bucket: str, key: str) -> Optional[ObjectMeta]:
        """転送先の HEAD（存在しない・取得できない場合は None）"""
        def head():
            try:
                return client.head(bucket, key)
            except ProtocolError as e:
                if e.status == 404:
                    return None
                raise

        try:
            return self._retry(head, f"Head {key}")
        except ProtocolError:
            return None

    def destination_key(self, prefix: str, key: str) -> str:
        if self.options.full_path:
            return prefix + key
        return prefix + posixpath.basename(key)

    def _walk(self, cursor: ListingCursor, worker: Callable[[ObjectEntry], TaskOutcome],
              operation: str) -> JobResult:
        """ページを順に処理する（ページ内は並列、次ページは前ページの完了後）"""
        dispatcher = self._dispatcher()
        stats = JobStats()
        try:
            for page in cursor:
                # 内部の各リクエストが個別にリトライするため、ここでは1回だけ実行する
                job = dispatcher.run(page.contents, worker, max_retries=1, stats=stats,
                                     description=lambda entry: f"{operation} {entry.key}")
                if job.error is not None:
                    return self._finish(operation, job)
        except StorageError as e:
            self.logger.error(f"{operation} listing failed: {e}")
            return self._finish(operation, JobResult.from_stats(stats, e))
        return self._finish(operation, JobResult.from_stats(stats))

    def _finish(self, operation: str, job: JobResult) -> JobResult:
        self.logger.info(
            f"{operation}: total={job.total} finish={job.finished} skip={job.skipped} size={job.size}"
            + ("" if job.success else f" error={job.error}")
        )
        return job

    # ---- ローカル → リモート ----

    def upload_from_dir(self, local_dir: str, bucket: str, prefix: str = "") -> JobResult:
        """ディレクトリ配下のファイルを prefix 以下へアップロード"""
        prefix = normalize_prefix(prefix)
        scanner = FileScanner(self.options.exclude_patterns)
        stats = JobStats()
        try:
            files = scanner.walk_dir(local_dir, self.options.suffix)
        except (OSError, ValueError) as e:
            return self._finish("UploadFromDir", JobResult.from_stats(stats, e))

        def worker(relative_path: str) -> TaskOutcome:
            file_path = os.path.join(local_dir, relative_path)
            key = prefix + relative_path
            stat = os.stat(file_path)
            if not self.options.replace:
                head = self._head_destination(self.client, bucket, key)
                if head is not None and should_skip(stat.st_size, stat.st_mtime,
                                                    head.size, head.last_modified):
                    return TaskOutcome(skipped=True)

            if stat.st_size > self.options.multipart_threshold:
                self.engine.upload_large_file(file_path, bucket, key)
            else:
                with open(file_path, "rb") as f:
                    body = f.read()
                disposition = self.options.disposition or posixpath.basename(relative_path)
                self._retry(
                    lambda: self.client.put(body, bucket, key, acl=self.options.acl,
                                            disposition=disposition,
                                            cancel_event=self.cancel_event),
                    f"Put {key}",
                )
            return TaskOutcome(size=stat.st_size)

        job = self._dispatcher().run(files, worker, max_retries=1, stats=stats,
                                     description=lambda name: f"UploadFromDir {name}")
        return self._finish("UploadFromDir", job)

    # ---- リモート → リモート（同一エンドポイント） ----

    def _copy_entry(self, bucket: str, prefix: str, source_bucket: str,
                    entry: ObjectEntry) -> Optional[ObjectMeta]:
        """1オブジェクトをコピー（スキップ時は None）"""
        key = self.destination_key(prefix, entry.key)
        source = f"/{source_bucket}/{entry.key}"
        head = self._retry(lambda: self.client.head(source_bucket, entry.key), f"Head {source}")
        if not self.options.replace:
            dest = self._head_destination(self.client, bucket, key)
            if dest is not None and should_skip(head.size, head.last_modified,
                                                dest.size, dest.last_modified):
                return None

        if head.size > TransferConfigManager.part_size(self.options):
            self.engine.copy_large_file(bucket, key, source)
        else:
            self._retry(lambda: self.client.copy(bucket, key, source, acl=self.options.acl),
                        f"Copy {source}")
        return head

    def copy_all_objects(self, bucket: str, prefix: str, source: str) -> JobResult:
        """source（/bucket/prefix）配下を bucket の prefix 以下へコピー"""
        prefix = normalize_prefix(prefix)
        source_bucket, source_prefix = split_source(source)

        def worker(entry: ObjectEntry) -> TaskOutcome:
            if not self.options.matches_suffix(entry.key):
                return TaskOutcome(skipped=True)
            head = self._copy_entry(bucket, prefix, source_bucket, entry)
            if head is None:
                return TaskOutcome(skipped=True)
            return TaskOutcome(size=head.size)

        cursor = ListingCursor.objects(self.client, source_bucket, source_prefix)
        return self._walk(cursor, worker, "CopyAllObject")

    def move_all_objects(self, bucket: str, prefix: str, source: str) -> JobResult:
        """コピー後に転送元を削除する（スキップしたものは削除しない）"""
        prefix = normalize_prefix(prefix)
        source_bucket, source_prefix = split_source(source)

        def worker(entry: ObjectEntry) -> TaskOutcome:
            if not self.options.matches_suffix(entry.key):
                return TaskOutcome(skipped=True)
            head = self._copy_entry(bucket, prefix, source_bucket, entry)
            if head is None:
                return TaskOutcome(skipped=True)
            self._retry(lambda: self.client.delete(source_bucket, entry.key),
                        f"Delete /{source_bucket}/{entry.key}")
            return TaskOutcome(size=head.size)

        cursor = ListingCursor.objects(self.client, source_bucket, source_prefix)
        return self._walk(cursor, worker, "MoveAllObject")

    def delete_all_objects(self, bucket: str, prefix: str = "") -> JobResult:
        """prefix 配下を一括削除（1リクエスト最大1000キー）"""
        batches: List[List[str]] = []
        try:
            for page in ListingCursor.objects(self.client, bucket, prefix):
                keys = [entry.key for entry in page.contents
                        if self.options.matches_suffix(entry.key)]
                if keys:
                    batches.append(keys)
        except StorageError as e:
            return self._finish("DeleteAllObject", JobResult(error=e))

        total = sum(len(keys) for keys in batches)

        def worker(keys: List[str]) -> TaskOutcome:
            self._retry(lambda: self.client.delete_objects(bucket, keys),
                        f"DeleteAllObject {bucket}/{prefix}")
            # size にはバッチ内のキー数を積む
            return TaskOutcome(size=len(keys))

        job = self._dispatcher().run(batches, worker, max_retries=1,
                                     description=lambda keys: f"DeleteAllObject {keys[0]}")
        return self._finish(
            "DeleteAllObject", JobResult(total=total, finished=job.size, error=job.error)
        )

    # ---- リモート → ローカル ----

    def download_all_objects(self, bucket: str, prefix: str, local_dir: str) -> JobResult:
        """prefix 配下を local_dir/キー へダウンロード

        ローカルファイルがリモートと同サイズかつ新しければスキップ。
        """
        def worker(entry: ObjectEntry) -> TaskOutcome:
            if entry.key.endswith("/") or not self.options.matches_suffix(entry.key):
                return TaskOutcome(skipped=True)
            local_file = os.path.join(local_dir, *entry.key.split("/"))
            if not self.options.replace and os.path.isfile(local_file):
                stat = os.stat(local_file)
                if should_skip(entry.size, entry.last_modified, stat.st_size, stat.st_mtime):
                    return TaskOutcome(skipped=True)
            head = self.engine.download_file(bucket, entry.key, local_file)
            return TaskOutcome(size=head.size)

        cursor = ListingCursor.objects(self.client, bucket, prefix)
        return self._walk(cursor, worker, "DownloadAllObject")

    # ---- リモート → 別エンドポイント ----

    def sync_all_objects(self, dest_client: StorageClient, bucket: str, prefix: str,
                         source: str) -> JobResult:
        """source（/bucket/prefix、このクライアント側）を dest_client の bucket へ同期"""
        prefix = normalize_prefix(prefix)
        source_bucket, source_prefix = split_source(source)
        part_size = TransferConfigManager.part_size(self.options)

        def worker(entry: ObjectEntry) -> TaskOutcome:
            if not self.options.matches_suffix(entry.key):
                return TaskOutcome(skipped=True)
            key = self.destination_key(prefix, entry.key)
            locator = f"/{source_bucket}/{entry.key}"
            head = self._retry(lambda: self.client.head(source_bucket, entry.key),
                               f"Head {locator}")
            if not self.options.replace:
                dest = self._head_destination(dest_client, bucket, key)
                if dest is not None and should_skip(head.size, head.last_modified,
                                                    dest.size, dest.last_modified):
                    return TaskOutcome(skipped=True)

            disposition = head.disposition or self.options.disposition
            if head.size > part_size:
                self.engine.sync_large_file(dest_client, bucket, key, locator, source_meta=head)
            else:
                body = self._retry(
                    lambda: self.client.get_object(source_bucket, entry.key,
                                                   cancel_event=self.cancel_event),
                    f"Get {locator}",
                )
                self._retry(
                    lambda: dest_client.put(body, bucket, key, acl=self.options.acl,
                                            disposition=disposition,
                                            cancel_event=self.cancel_event),
                    f"Put {key}",
                )
            return TaskOutcome(size=head.size)

        cursor = ListingCursor.objects(self.client, source_bucket, source_prefix)
        return self._walk(cursor, worker, "SyncAllObject")

    # ---- 未完了マルチパートの掃除 ----

    def delete_all_parts(self, bucket: str, prefix: str = "") -> JobResult:
        """開始から expired 秒以上経過した未完了アップロードを中断する"""
        now = self.client.clock()
        stats = JobStats()
        expired: List[UploadEntry] = []
        try:
            for page in ListingCursor.uploads(self.client, bucket, prefix):
                for upload in page.uploads:
                    if (upload.initiated is not None
                            and (now - upload.initiated).total_seconds() < self.options.expired):
                        stats.add_total(1)
                        stats.add_skipped()
                        continue
                    expired.append(upload)
        except StorageError as e:
            return self._finish("DeleteAllPart", JobResult.from_stats(stats, e))

        def worker(upload: UploadEntry) -> TaskOutcome:
            self._retry(lambda: self.client.abort_upload(bucket, upload.key, upload.upload_id),
                        f"CancelPart {upload.key}")
            return TaskOutcome()

        job = self._dispatcher().run(expired, worker, max_retries=1, stats=stats,
                                     description=lambda upload: f"CancelPart {upload.key}")
        return self._finish("DeleteAllPart", job)
