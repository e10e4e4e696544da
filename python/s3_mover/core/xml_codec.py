"""XMLレスポンスの項目抽出とリクエストボディの組み立て"""
import xml.etree.ElementTree as ET
from typing import Iterable, List, Optional
from xml.sax.saxutils import escape

from botocore.utils import parse_timestamp

from ..models.results import (
    AclResult, BucketEntry, InitUploadResult, ListObjectsResult, ListUploadsResult,
    ObjectEntry, PartResult, ServiceResult, UploadEntry,
)
from .errors import DecodeError


def _parse(body: bytes, what: str) -> ET.Element:
    if not body:
        raise DecodeError(f"{what} Error: respond body is nil")
    try:
        root = ET.fromstring(body)
    except ET.ParseError as e:
        raise DecodeError(f"{what} Error: {e}") from e
    # 名前空間を外して単純なタグ名で引けるようにする
    for element in root.iter():
        if isinstance(element.tag, str) and "}" in element.tag:
            element.tag = element.tag.split("}", 1)[1]
    return root


def _text(element: Optional[ET.Element], path: str, default: str = "") -> str:
    if element is None:
        return default
    value = element.findtext(path)
    return value if value is not None else default


def parse_time(value: str):
    if not value:
        return None
    try:
        return parse_timestamp(value)
    except (ValueError, TypeError, RuntimeError):
        return None


def _truthy(value: str) -> bool:
    return value.strip().lower() == "true"


def parse_init_upload(body: bytes) -> InitUploadResult:
    root = _parse(body, "InitUpload")
    upload_id = _text(root, "UploadId")
    if not upload_id:
        raise DecodeError("InitUpload Error: UploadId missing")
    return InitUploadResult(bucket=_text(root, "Bucket"), key=_text(root, "Key"), upload_id=upload_id)


def parse_etag(body: bytes, what: str) -> str:
    """CopyObjectResult / CopyPartResult / CompleteMultipartUploadResult の ETag"""
    return _text(_parse(body, what), "ETag")


def parse_list_objects(body: bytes) -> ListObjectsResult:
    root = _parse(body, "ListObject")
    contents = [
        ObjectEntry(
            key=_text(item, "Key"),
            size=int(_text(item, "Size", "0") or 0),
            last_modified=parse_time(_text(item, "LastModified")),
            etag=_text(item, "ETag"),
            storage_class=_text(item, "StorageClass"),
        )
        for item in root.findall("Contents")
    ]
    return ListObjectsResult(
        name=_text(root, "Name"),
        prefix=_text(root, "Prefix"),
        marker=_text(root, "Marker"),
        next_marker=_text(root, "NextMarker"),
        max_keys=int(_text(root, "MaxKeys", "1000") or 1000),
        delimiter=_text(root, "Delimiter"),
        is_truncated=_truthy(_text(root, "IsTruncated", "false")),
        common_prefixes=[_text(item, "Prefix") for item in root.findall("CommonPrefixes")],
        contents=contents,
    )


def parse_list_uploads(body: bytes) -> ListUploadsResult:
    root = _parse(body, "ListPart")
    return ListUploadsResult(
        bucket=_text(root, "Bucket"),
        next_key_marker=_text(root, "NextKeyMarker"),
        next_upload_id_marker=_text(root, "NextUploadIdMarker"),
        is_truncated=_truthy(_text(root, "IsTruncated", "false")),
        uploads=[
            UploadEntry(
                key=_text(item, "Key"),
                upload_id=_text(item, "UploadId"),
                initiated=parse_time(_text(item, "Initiated")),
            )
            for item in root.findall("Upload")
        ],
    )


def parse_service(body: bytes) -> ServiceResult:
    root = _parse(body, "GetService")
    return ServiceResult(
        owner_id=_text(root, "Owner/ID"),
        owner_name=_text(root, "Owner/DisplayName"),
        buckets=[
            BucketEntry(name=_text(item, "Name"), creation_date=parse_time(_text(item, "CreationDate")))
            for item in root.findall("Buckets/Bucket")
        ],
    )


def parse_acl(body: bytes) -> AclResult:
    root = _parse(body, "GetACL")
    return AclResult(
        owner_id=_text(root, "Owner/ID"),
        owner_name=_text(root, "Owner/DisplayName"),
        permissions=[_text(grant, "Permission") for grant in root.findall("AccessControlList/Grant")],
    )


def build_complete_body(parts: Iterable[PartResult]) -> bytes:
    """完了マニフェスト（PartNumber 昇順）"""
    items = "".join(
        f"<Part><PartNumber>{part.index + 1}</PartNumber><ETag>{escape(part.etag)}</ETag></Part>"
        for part in sorted(parts, key=lambda p: p.index)
    )
    return f"<CompleteMultipartUpload>{items}</CompleteMultipartUpload>".encode("utf-8")


def build_delete_body(keys: List[str]) -> bytes:
    items = "".join(f"<Object><Key>{escape(key)}</Key></Object>" for key in keys)
    return f"<Delete><Quiet>true</Quiet>{items}</Delete>".encode("utf-8")
