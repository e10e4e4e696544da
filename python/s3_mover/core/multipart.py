"""マルチパート転送エンジン"""
import os
import threading
from typing import Callable, List, Optional

from ..models.config import TransferOptions
from ..models.results import (
    CompleteResult, ObjectMeta, PartResult, PartSpec, PartStatus, SessionState, TaskOutcome,
    UploadSession,
)
from ..utils.logger import LoggerManager
from .client import StorageClient, resolve_key, split_source
from .dispatcher import BoundedDispatcher, ProgressCallback, call_with_retry
from .errors import TransportError
from .transfer import TransferConfigManager, plan_parts

# ダウンロード中の一時ファイルの接尾辞
PARTIAL_SUFFIX = ".part"

# (part, upload_id) -> ETag
PartSender = Callable[[PartSpec, str], str]


class MultipartEngine:
    """分割・並列送信・完了マニフェストの組み立てを行う"""

    def __init__(self, client: StorageClient, options: Optional[TransferOptions] = None,
                 cancel_event: Optional[threading.Event] = None,
                 progress: Optional[ProgressCallback] = None):
        self.client = client
        self.options = options or TransferOptions()
        self.cancel_event = cancel_event
        self.progress = progress
        self.logger = LoggerManager.get_logger()
        self.cleanup_threads: List[threading.Thread] = []

    def _dispatcher(self, part_count: int) -> BoundedDispatcher:
        return BoundedDispatcher(
            TransferConfigManager.thread_num(self.options, part_count),
            self.options.max_retries,
            self.cancel_event,
            self.progress,
        )

    def _retry(self, fn, description: str):
        return call_with_retry(fn, self.options.max_retries, self.cancel_event, description)

    @staticmethod
    def _read_part(file_path: str, part: PartSpec) -> bytes:
        with open(file_path, "rb") as f:
            f.seek(part.range_start)
            return f.read(part.size)

    # ---- セッション制御 ----

    def _run_session(self, client: StorageClient, bucket: str, key: str, total_size: int,
                     parts: List[PartSpec], send_part: PartSender,
                     disposition: Optional[str] = None) -> CompleteResult:
        """Init → 全パート送信 → Complete（失敗時は中断してエラーを送出）"""
        session = UploadSession(bucket=bucket, key=key,
                                parts=[PartResult(index=part.index) for part in parts])
        init = self._retry(
            lambda: client.init_upload(bucket, key, acl=self.options.acl, disposition=disposition),
            f"InitUpload {key}",
        )
        session.upload_id = init.upload_id
        session.transition(SessionState.INITIATED)
        self.logger.debug(f"InitUpload {key}: upload_id={session.upload_id} parts={len(parts)}")

        def worker(part: PartSpec) -> TaskOutcome:
            result = session.parts[part.index]
            try:
                result.etag = send_part(part, session.upload_id)
            except Exception:
                result.status = PartStatus.FAILED
                raise
            result.status = PartStatus.DONE
            return TaskOutcome(size=part.size)

        session.transition(SessionState.PARTS_IN_FLIGHT)
        job = self._dispatcher(len(parts)).run(
            parts, worker, description=lambda part: f"Part {part.part_number} of {key}"
        )
        if job.error is not None:
            self._abort(client, session)
            raise job.error

        try:
            complete = self._retry(
                lambda: client.complete_upload(session.manifest(), bucket, key,
                                               session.upload_id, total_size),
                f"CompleteUpload {key}",
            )
        except Exception:
            self._abort(client, session)
            raise
        session.transition(SessionState.COMPLETED)
        self.logger.info(f"Multipart upload completed: {bucket}/{key} ({len(parts)} parts)")
        return complete

    def _abort(self, client: StorageClient, session: UploadSession):
        """セッションを ABORTED にし、サーバー側の中断はバックグラウンドで行う"""
        session.transition(SessionState.ABORTED)
        thread = threading.Thread(
            target=self._abort_upload,
            args=(client, session.bucket, session.key, session.upload_id),
            name=f"abort-{session.upload_id}",
        )
        self.cleanup_threads.append(thread)
        thread.start()

    def _abort_upload(self, client: StorageClient, bucket: str, key: str, upload_id: str):
        try:
            client.abort_upload(bucket, key, upload_id)
            self.logger.info(f"Aborted multipart upload: {bucket}/{key} upload_id={upload_id}")
        except Exception as e:
            self.logger.warning(
                f"Failed to abort multipart upload {bucket}/{key} upload_id={upload_id}: {e}"
            )

    def wait_for_cleanup(self, timeout: Optional[float] = None):
        for thread in self.cleanup_threads:
            thread.join(timeout)

    # ---- 公開操作 ----

    def upload_large_file(self, file_path: str, bucket: str, key: str = "") -> CompleteResult:
        """ローカルファイルをマルチパートでアップロード"""
        key = resolve_key(key, file_path)
        size = os.path.getsize(file_path)
        if size == 0:
            put = self.client.put(b"", bucket, key, acl=self.options.acl,
                                  disposition=self.options.disposition)
            return CompleteResult(bucket=bucket, key=key, location=put.location, etag=put.etag)

        parts = plan_parts(size, TransferConfigManager.part_size(self.options))

        def send_part(part: PartSpec, upload_id: str) -> str:
            body = self._read_part(file_path, part)
            return self.client.upload_part(body, bucket, key, part.part_number, upload_id,
                                           cancel_event=self.cancel_event)

        return self._run_session(self.client, bucket, key, size, parts, send_part,
                                 disposition=self.options.disposition)

    def copy_large_file(self, bucket: str, key: str, source: str) -> CompleteResult:
        """同一エンドポイント内でのサーバー側マルチパートコピー（source は /bucket/key）"""
        source_bucket, source_key = split_source(source)
        head = self._retry(lambda: self.client.head(source_bucket, source_key), f"Head {source}")
        key = resolve_key(key, source_key)
        parts = plan_parts(head.size, TransferConfigManager.part_size(self.options))
        if not parts:
            result = self.client.copy(bucket, key, source, acl=self.options.acl)
            return CompleteResult(bucket=bucket, key=key, location=result.location, etag=result.etag)

        def send_part(part: PartSpec, upload_id: str) -> str:
            return self.client.copy_part(part.byte_range, bucket, key, source, part.part_number,
                                         upload_id, cancel_event=self.cancel_event)

        return self._run_session(self.client, bucket, key, head.size, parts, send_part,
                                 disposition=head.disposition or self.options.disposition)

    def sync_large_file(self, dest_client: StorageClient, bucket: str, key: str, source: str,
                        source_meta: Optional[ObjectMeta] = None) -> CompleteResult:
        """別エンドポイントへのマルチパート転送

        パートごとに Range GET して転送先へ UploadPart する。
        同時に保持するのは並列数ぶんのパートのみ。
        """
        source_bucket, source_key = split_source(source)
        head = source_meta or self._retry(
            lambda: self.client.head(source_bucket, source_key), f"Head {source}"
        )
        key = resolve_key(key, source_key)
        parts = plan_parts(head.size, TransferConfigManager.part_size(self.options))
        if not parts:
            put = dest_client.put(b"", bucket, key, acl=self.options.acl,
                                  disposition=head.disposition or self.options.disposition)
            return CompleteResult(bucket=bucket, key=key, location=put.location, etag=put.etag)

        def send_part(part: PartSpec, upload_id: str) -> str:
            body = self.client.get_object(source_bucket, source_key, part.byte_range,
                                          cancel_event=self.cancel_event)
            return dest_client.upload_part(body, bucket, key, part.part_number, upload_id,
                                           cancel_event=self.cancel_event)

        return self._run_session(dest_client, bucket, key, head.size, parts, send_part,
                                 disposition=head.disposition or self.options.disposition)

    def download_file(self, bucket: str, key: str, local_file: str) -> ObjectMeta:
        """Range GET を並列に行い、各パートをファイル内の位置へ書き込む

        一時ファイル（local_file + ".part"）へ書き込み、全パート成功後に置き換える。
        失敗時は一時ファイルを削除し、local_file には手を付けない。
        """
        head = self._retry(lambda: self.client.head(bucket, key), f"Head {key}")
        directory = os.path.dirname(local_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        temp_file = local_file + PARTIAL_SUFFIX
        parts = plan_parts(head.size, TransferConfigManager.part_size(self.options, download=True))

        def worker(part: PartSpec) -> TaskOutcome:
            body = self.client.get_object(bucket, key, part.byte_range,
                                          cancel_event=self.cancel_event)
            if len(body) != part.size:
                raise TransportError(
                    f"Short read on {key} part {part.part_number}: {len(body)}/{part.size} bytes"
                )
            with open(temp_file, "r+b") as f:
                f.seek(part.range_start)
                f.write(body)
            return TaskOutcome(size=part.size)

        try:
            with open(temp_file, "wb") as f:
                f.truncate(head.size)
            if parts:
                job = self._dispatcher(len(parts)).run(
                    parts, worker, description=lambda part: f"Range {part.byte_range} of {key}"
                )
                job.raise_for_error()
            os.replace(temp_file, local_file)
        finally:
            if os.path.exists(temp_file):
                os.remove(temp_file)
        self.logger.debug(f"Downloaded {bucket}/{key} to {local_file} ({len(parts)} parts)")
        return head
