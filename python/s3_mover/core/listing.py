"""マーカー方式のページング"""
from typing import Callable, Generic, Iterator, TypeVar

from ..models.results import ListObjectsResult, ListUploadsResult
from .client import MAX_KEYS, StorageClient

Page = TypeVar("Page", ListObjectsResult, ListUploadsResult)


class ListingCursor(Generic[Page]):
    """一覧取得のカーソル

    反復するとページを1つずつ返す。次ページの取得は呼び出し側が
    前ページの処理を終えて次を要求した時点で行われる。
    reset() で先頭からやり直せる。
    """

    def __init__(self, fetch: Callable[[str, int], Page], next_marker: Callable[[Page], str],
                 page_size: int = MAX_KEYS, marker: str = ""):
        self._fetch = fetch
        self._next_marker = next_marker
        self.page_size = max(1, min(page_size, MAX_KEYS))
        self.start_marker = marker
        self.marker = marker
        self.next_marker = ""
        self.is_truncated = True
        self.pages = 0

    def reset(self):
        self.marker = self.start_marker
        self.next_marker = ""
        self.is_truncated = True
        self.pages = 0

    def __iter__(self) -> Iterator[Page]:
        while self.is_truncated:
            page = self._fetch(self.marker, self.page_size)
            self.pages += 1
            self.is_truncated = page.is_truncated
            self.next_marker = self._next_marker(page)
            yield page
            if self.is_truncated:
                if not self.next_marker or self.next_marker == self.marker:
                    # マーカーが進まないと無限ループになる
                    self.is_truncated = False
                    break
                self.marker = self.next_marker

    @classmethod
    def objects(cls, client: StorageClient, bucket: str, prefix: str = "",
                page_size: int = MAX_KEYS, marker: str = "") -> "ListingCursor[ListObjectsResult]":
        """ListObjects のカーソル（マーカーは前ページ最後のキー）"""
        return cls(
            lambda current, size: client.list_objects(bucket, prefix=prefix, marker=current,
                                                      max_keys=size),
            _last_object_key,
            page_size,
            marker,
        )

    @classmethod
    def uploads(cls, client: StorageClient, bucket: str, prefix: str = "",
                page_size: int = MAX_KEYS) -> "ListingCursor[ListUploadsResult]":
        """未完了マルチパートアップロードのカーソル（NextKeyMarker で進む）"""
        return cls(
            lambda current, size: client.list_uploads(bucket, prefix=prefix, key_marker=current,
                                                      max_uploads=size),
            _next_upload_key,
            page_size,
        )


def _last_object_key(page: ListObjectsResult) -> str:
    if page.contents:
        return page.contents[-1].key
    return page.next_marker


def _next_upload_key(page: ListUploadsResult) -> str:
    if page.next_key_marker:
        return page.next_key_marker
    return page.uploads[-1].key if page.uploads else ""
