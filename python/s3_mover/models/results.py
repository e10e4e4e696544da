"""転送処理で扱う型付きデータ"""
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional


@dataclass(frozen=True)
class PartSpec:
    """分割計画の1パート（range_end は末尾バイトを含む）"""
    index: int
    range_start: int
    range_end: int
    size: int

    @property
    def part_number(self) -> int:
        return self.index + 1

    @property
    def byte_range(self) -> str:
        return f"bytes={self.range_start}-{self.range_end}"


class PartStatus(Enum):
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"


@dataclass
class PartResult:
    """パートごとの結果（担当ワーカーのみが書き込む）"""
    index: int
    etag: str = ""
    status: PartStatus = PartStatus.PENDING


class SessionState(Enum):
    IDLE = "idle"
    INITIATED = "initiated"
    PARTS_IN_FLIGHT = "parts_in_flight"
    COMPLETED = "completed"
    ABORTED = "aborted"


_TRANSITIONS = {
    SessionState.IDLE: {SessionState.INITIATED, SessionState.ABORTED},
    SessionState.INITIATED: {SessionState.PARTS_IN_FLIGHT, SessionState.ABORTED},
    SessionState.PARTS_IN_FLIGHT: {SessionState.COMPLETED, SessionState.ABORTED},
    SessionState.COMPLETED: set(),
    SessionState.ABORTED: set(),
}


@dataclass
class UploadSession:
    """マルチパートアップロードのセッション"""
    bucket: str
    key: str
    upload_id: str = ""
    parts: List[PartResult] = field(default_factory=list)
    state: SessionState = SessionState.IDLE

    def transition(self, new_state: SessionState):
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid session transition: {self.state.value} -> {new_state.value}")
        self.state = new_state

    def manifest(self) -> List[PartResult]:
        """PartNumber 昇順のマニフェスト"""
        return sorted(self.parts, key=lambda part: part.index)


@dataclass
class TaskOutcome:
    """ディスパッチャーの1タスクの結果"""
    skipped: bool = False
    size: int = 0


class JobStats:
    """ジョブ単位の集計（ワーカー間で共有）"""

    def __init__(self, total: int = 0):
        self._lock = threading.Lock()
        self.total = total
        self.finished = 0
        self.skipped = 0
        self.bytes_transferred = 0

    def add_total(self, count: int):
        with self._lock:
            self.total += count

    def add_finished(self, size: int = 0) -> int:
        with self._lock:
            self.finished += 1
            self.bytes_transferred += size
            return self.finished

    def add_skipped(self) -> int:
        with self._lock:
            self.skipped += 1
            return self.skipped

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "total": self.total,
                "finished": self.finished,
                "skipped": self.skipped,
                "size": self.bytes_transferred,
            }


@dataclass
class JobResult:
    """ジョブ全体の結果"""
    total: int = 0
    finished: int = 0
    skipped: int = 0
    size: int = 0
    error: Optional[BaseException] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def from_stats(cls, stats: JobStats, error: Optional[BaseException] = None) -> "JobResult":
        snap = stats.snapshot()
        return cls(
            total=snap["total"],
            finished=snap["finished"],
            skipped=snap["skipped"],
            size=snap["size"],
            error=error,
        )

    def raise_for_error(self):
        if self.error is not None:
            raise self.error


@dataclass
class ObjectMeta:
    """HEAD の結果"""
    bucket: str
    key: str
    size: int = 0
    last_modified: Optional[datetime] = None
    etag: str = ""
    content_type: str = ""
    disposition: str = ""
    request_id: str = ""


@dataclass
class PutResult:
    bucket: str
    key: str
    location: str
    size: int = 0
    etag: str = ""
    request_id: str = ""
    status: int = 200


@dataclass
class CompleteResult:
    bucket: str
    key: str
    location: str
    etag: str = ""
    size: int = 0
    upload_id: str = ""


@dataclass
class InitUploadResult:
    bucket: str
    key: str
    upload_id: str


@dataclass
class ObjectEntry:
    key: str
    size: int = 0
    last_modified: Optional[datetime] = None
    etag: str = ""
    storage_class: str = ""


@dataclass
class ListObjectsResult:
    name: str = ""
    prefix: str = ""
    marker: str = ""
    next_marker: str = ""
    max_keys: int = 1000
    delimiter: str = ""
    is_truncated: bool = False
    common_prefixes: List[str] = field(default_factory=list)
    contents: List[ObjectEntry] = field(default_factory=list)


@dataclass
class UploadEntry:
    key: str
    upload_id: str
    initiated: Optional[datetime] = None


@dataclass
class ListUploadsResult:
    bucket: str = ""
    next_key_marker: str = ""
    next_upload_id_marker: str = ""
    is_truncated: bool = False
    uploads: List[UploadEntry] = field(default_factory=list)


@dataclass
class BucketEntry:
    name: str
    creation_date: Optional[datetime] = None


@dataclass
class ServiceResult:
    owner_id: str = ""
    owner_name: str = ""
    buckets: List[BucketEntry] = field(default_factory=list)


@dataclass
class AclResult:
    owner_id: str = ""
    owner_name: str = ""
    permissions: List[str] = field(default_factory=list)
