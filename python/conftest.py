"""テスト共通のフィクスチャ"""
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from s3_mover.core.client import resolve_key, split_source
from s3_mover.core.errors import ProtocolError, TransportError
from s3_mover.core.transport import HttpResponse
from s3_mover.models.config import LoggingConfig
from s3_mover.models.results import (
    CompleteResult, InitUploadResult, ListObjectsResult, ListUploadsResult, ObjectEntry,
    ObjectMeta, PutResult, UploadEntry,
)
from s3_mover.utils.logger import LoggerManager

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def logger():
    LoggerManager.reset()
    yield LoggerManager.setup(LoggingConfig(level="DEBUG"))
    LoggerManager.reset()


@dataclass
class FakeObject:
    body: bytes
    last_modified: datetime
    disposition: str = ""


@dataclass
class Fault:
    operation: str
    remaining: int
    match: Callable[[dict], bool]
    error: Callable[[], Exception]


class FakeStorage:
    """メモリ上のエンドポイント（StorageClient と同じ操作を持つ）"""

    def __init__(self, name: str = "fake", now: datetime = BASE_TIME, delay: float = 0.0):
        self.name = name
        self.now = now
        self.delay = delay
        self.objects: Dict[Tuple[str, str], FakeObject] = {}
        self.uploads: Dict[str, dict] = {}
        self.calls: List[Tuple[str, dict]] = []
        self.completed_manifests: List[List[int]] = []
        self.faults: List[Fault] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self._lock = threading.Lock()
        self._upload_seq = 0

    # ---- テスト用の操作 ----

    def clock(self) -> datetime:
        return self.now

    def add_object(self, bucket: str, key: str, body: bytes,
                   last_modified: Optional[datetime] = None, disposition: str = ""):
        self.objects[(bucket, key)] = FakeObject(body, last_modified or self.now, disposition)

    def add_upload(self, bucket: str, key: str, initiated: datetime) -> str:
        with self._lock:
            self._upload_seq += 1
            upload_id = f"upload-{self._upload_seq}"
        self.uploads[upload_id] = {"bucket": bucket, "key": key, "parts": {}, "initiated": initiated}
        return upload_id

    def fail(self, operation: str, times: int = 1, match: Callable[[dict], bool] = lambda kw: True,
             error: Optional[Callable[[], Exception]] = None):
        self.faults.append(Fault(
            operation, times, match,
            error or (lambda: TransportError(f"injected {operation} failure")),
        ))

    def count(self, operation: str) -> int:
        return sum(1 for name, _ in self.calls if name == operation)

    def _record(self, operation: str, **kwargs):
        with self._lock:
            self.calls.append((operation, kwargs))
            for fault in self.faults:
                if fault.operation == operation and fault.remaining > 0 and fault.match(kwargs):
                    fault.remaining -= 1
                    raise fault.error()

    def _enter(self):
        with self._lock:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)

    def _leave(self):
        with self._lock:
            self.in_flight -= 1

    def _not_found(self, operation: str, key: str) -> ProtocolError:
        return ProtocolError(operation, key, 404, "fake-request-id")

    # ---- オブジェクト ----

    def head(self, bucket: str, key: str) -> ObjectMeta:
        self._record("head", bucket=bucket, key=key)
        obj = self.objects.get((bucket, key))
        if obj is None:
            raise self._not_found("Head Object", key)
        return ObjectMeta(bucket=bucket, key=key, size=len(obj.body),
                          last_modified=obj.last_modified, disposition=obj.disposition)

    def put(self, body: bytes, bucket: str, key: str, acl=None, disposition=None,
            cancel_event=None) -> PutResult:
        self._record("put", bucket=bucket, key=key, acl=acl, disposition=disposition)
        self.objects[(bucket, key)] = FakeObject(bytes(body), self.now, disposition or "")
        return PutResult(bucket=bucket, key=key, location=f"fake://{bucket}/{key}", size=len(body))

    def put_file(self, file_path: str, bucket: str, key: str = "", acl=None,
                 disposition=None) -> PutResult:
        key = resolve_key(key, file_path)
        with open(file_path, "rb") as f:
            return self.put(f.read(), bucket, key, acl=acl, disposition=disposition)

    def get_object(self, bucket: str, key: str, byte_range: Optional[str] = None,
                   cancel_event=None) -> bytes:
        self._record("get_object", bucket=bucket, key=key, byte_range=byte_range)
        obj = self.objects.get((bucket, key))
        if obj is None:
            raise self._not_found("Cat Object", key)
        if not byte_range:
            return obj.body
        start, end = byte_range[len("bytes="):].split("-")
        return obj.body[int(start):int(end) + 1]

    def copy(self, bucket: str, key: str, source: str, acl=None) -> PutResult:
        source_bucket, source_key = split_source(source)
        key = resolve_key(key, source_key)
        self._record("copy", bucket=bucket, key=key, source=source)
        obj = self.objects.get((source_bucket, source_key))
        if obj is None:
            raise self._not_found("Copy Object", key)
        self.objects[(bucket, key)] = FakeObject(obj.body, self.now, obj.disposition)
        return PutResult(bucket=bucket, key=key, location=f"fake://{bucket}/{key}", size=len(obj.body))

    def delete(self, bucket: str, key: str) -> int:
        self._record("delete", bucket=bucket, key=key)
        self.objects.pop((bucket, key), None)
        return 204

    def delete_objects(self, bucket: str, keys: List[str]) -> int:
        self._record("delete_objects", bucket=bucket, keys=list(keys))
        for key in keys:
            self.objects.pop((bucket, key), None)
        return 200

    def list_objects(self, bucket: str, prefix: str = "", marker: str = "",
                     max_keys: int = 1000, delimiter: str = "") -> ListObjectsResult:
        self._record("list_objects", bucket=bucket, prefix=prefix, marker=marker, max_keys=max_keys)
        keys = sorted(
            key for (b, key) in self.objects
            if b == bucket and key.startswith(prefix) and key > marker
        )
        page = keys[:max_keys]
        return ListObjectsResult(
            name=bucket,
            prefix=prefix,
            marker=marker,
            max_keys=max_keys,
            is_truncated=len(keys) > max_keys,
            contents=[
                ObjectEntry(key=key, size=len(self.objects[(bucket, key)].body),
                            last_modified=self.objects[(bucket, key)].last_modified)
                for key in page
            ],
        )

    # ---- マルチパート ----

    def list_uploads(self, bucket: str, prefix: str = "", key_marker: str = "",
                     max_uploads: int = 1000, delimiter: str = "") -> ListUploadsResult:
        self._record("list_uploads", bucket=bucket, prefix=prefix, key_marker=key_marker)
        entries = sorted(
            (upload["key"], upload_id, upload["initiated"])
            for upload_id, upload in self.uploads.items()
            if upload["bucket"] == bucket and upload["key"].startswith(prefix)
            and upload["key"] > key_marker
        )
        page = entries[:max_uploads]
        truncated = len(entries) > max_uploads
        return ListUploadsResult(
            bucket=bucket,
            next_key_marker=page[-1][0] if truncated else "",
            is_truncated=truncated,
            uploads=[UploadEntry(key=key, upload_id=upload_id, initiated=initiated)
                     for key, upload_id, initiated in page],
        )

    def init_upload(self, bucket: str, key: str, acl=None, disposition=None) -> InitUploadResult:
        self._record("init_upload", bucket=bucket, key=key, disposition=disposition)
        upload_id = self.add_upload(bucket, key, self.now)
        self.uploads[upload_id]["disposition"] = disposition or ""
        return InitUploadResult(bucket=bucket, key=key, upload_id=upload_id)

    def upload_part(self, body: bytes, bucket: str, key: str, part_number: int, upload_id: str,
                    cancel_event=None) -> str:
        self._enter()
        try:
            if self.delay:
                time.sleep(self.delay)
            self._record("upload_part", bucket=bucket, key=key, part_number=part_number,
                         size=len(body))
            self.uploads[upload_id]["parts"][part_number] = bytes(body)
            return f'"etag-{part_number}"'
        finally:
            self._leave()

    def copy_part(self, byte_range: str, bucket: str, key: str, source: str, part_number: int,
                  upload_id: str, cancel_event=None) -> str:
        self._record("copy_part", bucket=bucket, key=key, part_number=part_number,
                     byte_range=byte_range)
        source_bucket, source_key = split_source(source)
        body = self.get_object(source_bucket, source_key, byte_range)
        self.uploads[upload_id]["parts"][part_number] = body
        return f'"etag-{part_number}"'

    def complete_upload(self, parts, bucket: str, key: str, upload_id: str,
                        size: int) -> CompleteResult:
        parts = list(parts)
        self._record("complete_upload", bucket=bucket, key=key, upload_id=upload_id, size=size)
        numbers = [part.index + 1 for part in parts]
        self.completed_manifests.append(numbers)
        upload = self.uploads.pop(upload_id)
        body = b"".join(upload["parts"][number] for number in numbers)
        self.objects[(bucket, key)] = FakeObject(body, self.now, upload.get("disposition", ""))
        return CompleteResult(bucket=bucket, key=key, location=f"fake://{bucket}/{key}",
                              etag='"complete"', size=size, upload_id=upload_id)

    def abort_upload(self, bucket: str, key: str, upload_id: str) -> int:
        self._record("abort_upload", bucket=bucket, key=key, upload_id=upload_id)
        self.uploads.pop(upload_id, None)
        return 204

    def close(self):
        pass


class RecordingTransport:
    """送信内容を記録し、用意した応答を順に返す"""

    def __init__(self, responses: Optional[List[HttpResponse]] = None):
        self.responses = list(responses or [])
        self.requests: List[dict] = []

    def queue(self, status: int = 200, headers: Optional[dict] = None, body: bytes = b""):
        self.responses.append(HttpResponse(status, headers or {}, body))

    def send(self, method, url, headers, body=b"", cancel_event=None) -> HttpResponse:
        self.requests.append({"method": method, "url": url, "headers": dict(headers), "body": body})
        if self.responses:
            return self.responses.pop(0)
        return HttpResponse(200, {}, b"")

    def close(self):
        pass


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: BASE_TIME


def older(seconds: int = 3600) -> datetime:
    return BASE_TIME - timedelta(seconds=seconds)
