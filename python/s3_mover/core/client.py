"""ストレージクライアント（方言 + HTTP送受信を組み合わせたプリミティブ操作）"""
import base64
import hashlib
import mimetypes
import posixpath
import threading
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..models.results import (
    AclResult, CompleteResult, InitUploadResult, ListObjectsResult, ListUploadsResult,
    ObjectMeta, PartResult, PutResult, ServiceResult,
)
from ..utils.logger import LoggerManager
from . import xml_codec
from .dialect import Dialect, QueryParams, V4Dialect, quote_key
from .errors import ConfigError, ProtocolError
from .transport import HttpResponse, HttpTransport

MAX_KEYS = 1000


def content_md5(body: bytes) -> str:
    return base64.b64encode(hashlib.md5(body).digest()).decode("ascii")


def content_type_for(key: str) -> str:
    return mimetypes.guess_type(key)[0] or ""


def split_source(source: str) -> Tuple[str, str]:
    """"/bucket/path/to/key" を (bucket, key) に分解"""
    parts = source.lstrip("/").split("/", 1)
    if not parts[0]:
        raise ConfigError(f"Invalid source: {source}. Expected /bucket/key")
    return parts[0], parts[1] if len(parts) > 1 else ""


def resolve_key(key: str, file_name: str) -> str:
    """キー未指定なら元のファイル名、"/" で終わるならその下に配置"""
    base = posixpath.basename(file_name)
    if not key:
        return base
    if key.endswith("/"):
        return key + base
    return key


def disposition_header(value: str) -> str:
    if value.lower().startswith(("attachment", "inline")):
        return value
    return f'attachment; filename="{value}"'


class StorageClient:
    """1つのエンドポイントに対するバケット／オブジェクト操作"""

    def __init__(self, dialect: Dialect, transport: Optional[HttpTransport] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.dialect = dialect
        self.transport = transport or HttpTransport()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = LoggerManager.get_logger()

    @property
    def name(self) -> str:
        return self.dialect.name

    def _request(self, operation: str, target: str, method: str, bucket: str = "", key: str = "",
                 query: Optional[QueryParams] = None, headers: Optional[Dict[str, str]] = None,
                 unsigned_headers: Optional[Dict[str, str]] = None, body: bytes = b"",
                 ok: Sequence[int] = (200,),
                 cancel_event: Optional[threading.Event] = None) -> HttpResponse:
        signed = self.dialect.sign(method, bucket, key, query, headers or {}, body, self.clock())
        if unsigned_headers:
            signed.update(unsigned_headers)
        url = self.dialect.url(bucket, key, query)
        response = self.transport.send(method, url, signed, body, cancel_event)
        self.logger.debug(f"{operation}: {target} StatusCode: {response.status}")
        if response.status not in ok:
            raise ProtocolError(
                operation, target, response.status, response.header(self.dialect.request_id_header)
            )
        return response

    def _acl_headers(self, acl: Optional[str]) -> Dict[str, str]:
        return {self.dialect.acl_header: acl} if acl else {}

    # ---- bucket ----

    def get_service(self) -> ServiceResult:
        response = self._request("GetService", self.dialect.host, "GET")
        return xml_codec.parse_service(response.body)

    def create_bucket(self, bucket: str, acl: Optional[str] = None) -> int:
        body = b""
        if isinstance(self.dialect, V4Dialect) and self.dialect.region != "us-east-1":
            body = (
                "<CreateBucketConfiguration><LocationConstraint>"
                f"{self.dialect.region}</LocationConstraint></CreateBucketConfiguration>"
            ).encode("utf-8")
        response = self._request("CreateBucket Bucket", bucket, "PUT", bucket,
                                 headers=self._acl_headers(acl), body=body)
        return response.status

    def delete_bucket(self, bucket: str) -> int:
        response = self._request("DeleteBucket Bucket", bucket, "DELETE", bucket, ok=(200, 204))
        return response.status

    def get_acl(self, bucket: str) -> AclResult:
        response = self._request("GetACL Bucket", bucket, "GET", bucket, query=[("acl", None)])
        return xml_codec.parse_acl(response.body)

    def set_acl(self, bucket: str, acl: str) -> int:
        response = self._request("SetACL Bucket", bucket, "PUT", bucket, query=[("acl", None)],
                                 headers=self._acl_headers(acl))
        return response.status

    def list_uploads(self, bucket: str, prefix: str = "", key_marker: str = "",
                     max_uploads: int = MAX_KEYS, delimiter: str = "") -> ListUploadsResult:
        query: List[Tuple[str, Optional[str]]] = [("uploads", None)]
        if delimiter:
            query.append(("delimiter", delimiter))
        if key_marker:
            query.append(("key-marker", key_marker))
        query.append(("max-uploads", str(max_uploads)))
        if prefix:
            query.append(("prefix", prefix))
        response = self._request("ListPart Bucket", bucket, "GET", bucket, query=query)
        return xml_codec.parse_list_uploads(response.body)

    # ---- object ----

    def head(self, bucket: str, key: str) -> ObjectMeta:
        response = self._request("Head Object", key, "HEAD", bucket, key)
        return ObjectMeta(
            bucket=bucket,
            key=key,
            size=int(response.header("content-length", "0") or 0),
            last_modified=xml_codec.parse_time(response.header("last-modified")),
            etag=response.header("etag"),
            content_type=response.header("content-type"),
            disposition=response.header("content-disposition"),
            request_id=response.header(self.dialect.request_id_header),
        )

    def put(self, body: bytes, bucket: str, key: str, acl: Optional[str] = None,
            disposition: Optional[str] = None,
            cancel_event: Optional[threading.Event] = None) -> PutResult:
        headers = {"Content-MD5": content_md5(body)}
        content_type = content_type_for(key)
        if content_type:
            headers["Content-Type"] = content_type
        headers.update(self._acl_headers(acl))
        unsigned = {"Content-Length": str(len(body))}
        if disposition:
            unsigned["Content-Disposition"] = disposition_header(disposition)
        response = self._request("Put Object", key, "PUT", bucket, key, headers=headers,
                                 unsigned_headers=unsigned, body=body, cancel_event=cancel_event)
        return PutResult(
            bucket=bucket,
            key=key,
            location=self.dialect.location(bucket, key),
            size=len(body),
            etag=response.header("etag"),
            request_id=response.header(self.dialect.request_id_header),
            status=response.status,
        )

    def put_file(self, file_path: str, bucket: str, key: str = "", acl: Optional[str] = None,
                 disposition: Optional[str] = None) -> PutResult:
        """ローカルファイルを1リクエストでアップロード"""
        key = resolve_key(key, file_path)
        with open(file_path, "rb") as f:
            body = f.read()
        return self.put(body, bucket, key, acl=acl, disposition=disposition)

    def get_object(self, bucket: str, key: str, byte_range: Optional[str] = None,
                   cancel_event: Optional[threading.Event] = None) -> bytes:
        unsigned = {"Range": byte_range} if byte_range else None
        response = self._request("Cat Object", key, "GET", bucket, key, unsigned_headers=unsigned,
                                 ok=(200, 206), cancel_event=cancel_event)
        return response.body

    def copy(self, bucket: str, key: str, source: str, acl: Optional[str] = None) -> PutResult:
        source_bucket, source_key = split_source(source)
        source_head = self.head(source_bucket, source_key)
        key = resolve_key(key, source_key)
        headers = {"x-amz-copy-source": f"/{source_bucket}/{quote_key(source_key)}"}
        headers.update(self._acl_headers(acl))
        response = self._request("Copy Object", key, "PUT", bucket, key, headers=headers)
        return PutResult(
            bucket=bucket,
            key=key,
            location=self.dialect.location(bucket, key),
            size=source_head.size,
            etag=xml_codec.parse_etag(response.body, "Copy Object"),
            request_id=response.header(self.dialect.request_id_header),
            status=response.status,
        )

    def delete(self, bucket: str, key: str) -> int:
        response = self._request("Delete Object", key, "DELETE", bucket, key, ok=(200, 204))
        return response.status

    def delete_objects(self, bucket: str, keys: List[str]) -> int:
        """最大1000件をまとめて削除（Quiet モード）"""
        body = xml_codec.build_delete_body(keys)
        response = self._request(
            "DeleteAllObject Bucket", bucket, "POST", bucket, query=[("delete", None)],
            headers={"Content-MD5": content_md5(body)},
            unsigned_headers={"Content-Length": str(len(body))}, body=body,
        )
        return response.status

    def list_objects(self, bucket: str, prefix: str = "", marker: str = "",
                     max_keys: int = MAX_KEYS, delimiter: str = "") -> ListObjectsResult:
        query: List[Tuple[str, Optional[str]]] = []
        if delimiter:
            query.append(("delimiter", delimiter))
        if marker:
            query.append(("marker", marker))
        query.append(("max-keys", str(max_keys)))
        if prefix:
            query.append(("prefix", prefix))
        response = self._request("ListObject Bucket", bucket, "GET", bucket, query=query)
        return xml_codec.parse_list_objects(response.body)

    # ---- multipart ----

    def init_upload(self, bucket: str, key: str, acl: Optional[str] = None,
                    disposition: Optional[str] = None) -> InitUploadResult:
        headers = {}
        content_type = content_type_for(key)
        if content_type:
            headers["Content-Type"] = content_type
        headers.update(self._acl_headers(acl))
        unsigned = {"Content-Disposition": disposition_header(disposition)} if disposition else None
        response = self._request("InitUpload Object", key, "POST", bucket, key,
                                 query=[("uploads", None)], headers=headers,
                                 unsigned_headers=unsigned)
        return xml_codec.parse_init_upload(response.body)

    def upload_part(self, body: bytes, bucket: str, key: str, part_number: int, upload_id: str,
                    cancel_event: Optional[threading.Event] = None) -> str:
        query = [("partNumber", str(part_number)), ("uploadId", upload_id)]
        response = self._request("UploadPart Object", key, "PUT", bucket, key, query=query,
                                 unsigned_headers={"Content-Length": str(len(body))},
                                 body=body, cancel_event=cancel_event)
        return response.header("etag")

    def copy_part(self, byte_range: str, bucket: str, key: str, source: str, part_number: int,
                  upload_id: str, cancel_event: Optional[threading.Event] = None) -> str:
        source_bucket, source_key = split_source(source)
        query = [("partNumber", str(part_number)), ("uploadId", upload_id)]
        headers = {
            "x-amz-copy-source": f"/{source_bucket}/{quote_key(source_key)}",
            "x-amz-copy-source-range": byte_range,
        }
        response = self._request("CopyPart Object", key, "PUT", bucket, key, query=query,
                                 headers=headers, cancel_event=cancel_event)
        return xml_codec.parse_etag(response.body, "CopyPart Object")

    def complete_upload(self, parts: Iterable[PartResult], bucket: str, key: str,
                        upload_id: str, size: int) -> CompleteResult:
        body = xml_codec.build_complete_body(parts)
        headers = {"Content-MD5": content_md5(body)}
        content_type = content_type_for(key)
        if content_type:
            headers["Content-Type"] = content_type
        response = self._request("CompleteUpload Object", key, "POST", bucket, key,
                                 query=[("uploadId", upload_id)], headers=headers,
                                 unsigned_headers={"Content-Length": str(len(body))}, body=body)
        return CompleteResult(
            bucket=bucket,
            key=key,
            location=self.dialect.location(bucket, key),
            etag=xml_codec.parse_etag(response.body, "CompleteUpload Object"),
            size=size,
            upload_id=upload_id,
        )

    def abort_upload(self, bucket: str, key: str, upload_id: str) -> int:
        response = self._request("CancelPart Object", key, "DELETE", bucket, key,
                                 query=[("uploadId", upload_id)], ok=(200, 204))
        return response.status

    def close(self):
        self.transport.close()
