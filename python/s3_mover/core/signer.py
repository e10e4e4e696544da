"""リクエスト署名

レガシー方式（HMAC-SHA1）と正規リクエスト方式（AWS Signature V4）の2種類。
どちらも入力とタイムスタンプだけから決まる純粋な計算で、同じ入力からは常に
同じ Authorization ヘッダーを生成する。
"""
import base64
import hashlib
import hmac
from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Tuple
from urllib.parse import quote

EMPTY_SHA256 = "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
V4_ALGORITHM = "AWS4-HMAC-SHA256"
V4_TERMINATOR = "aws4_request"
ISO8601_DATETIME = "%Y%m%dT%H%M%SZ"


def sha256_hex(data: bytes) -> str:
    """ボディのSHA-256（空ボディは定数）"""
    if not data:
        return EMPTY_SHA256
    return hashlib.sha256(data).hexdigest()


def _hmac_sha256(key: bytes, msg: str) -> bytes:
    return hmac.new(key, msg.encode("utf-8"), hashlib.sha256).digest()


class LegacySigner:
    """レガシー方式の署名（string-to-sign + HMAC-SHA1）"""

    def __init__(self, access_key: str, secret_key: str,
                 vendor_prefix: str = "x-amz-", auth_prefix: str = "AWS"):
        self.access_key = access_key
        self.secret_key = secret_key
        self.vendor_prefix = vendor_prefix
        self.auth_prefix = auth_prefix

    def canonical_headers(self, headers: Dict[str, str]) -> str:
        lowered = {name.lower(): value for name, value in headers.items()}
        lines = []
        for name in sorted(lowered):
            if name.startswith(self.vendor_prefix):
                lines.append(f"{name}:{lowered[name]}\n")
            else:
                lines.append(f"{lowered[name]}\n")
        return "".join(lines)

    def string_to_sign(self, method: str, headers: Dict[str, str],
                       bucket: str = "", resource: str = "") -> str:
        sign = method + "\n" + self.canonical_headers(headers) + "/"
        if bucket:
            sign += bucket
        if resource:
            sign += "/" + resource
        return sign

    def signature(self, string_to_sign: str) -> str:
        digest = hmac.new(
            self.secret_key.encode("utf-8"), string_to_sign.encode("utf-8"), hashlib.sha1
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    def authorization(self, method: str, headers: Dict[str, str],
                      bucket: str = "", resource: str = "") -> str:
        sign = self.string_to_sign(method, headers, bucket, resource)
        return f"{self.auth_prefix} {self.access_key}:{self.signature(sign)}"


class V4Signer:
    """正規リクエスト方式の署名（AWS Signature Version 4）"""

    def __init__(self, access_key: str, secret_key: str, region: str, service: str = "s3"):
        self.access_key = access_key
        self.secret_key = secret_key
        self.region = region
        self.service = service

    @staticmethod
    def format_datetime(timestamp: datetime) -> str:
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(timezone.utc)
        return timestamp.strftime(ISO8601_DATETIME)

    def credential_scope(self, timestamp: datetime) -> str:
        date = self.format_datetime(timestamp)[:8]
        return f"{date}/{self.region}/{self.service}/{V4_TERMINATOR}"

    @staticmethod
    def canonical_query(query: Optional[Iterable[Tuple[str, str]]]) -> str:
        if not query:
            return ""
        pairs = sorted(
            (quote(str(key), safe="-_.~"), quote(str(value), safe="-_.~"))
            for key, value in query
        )
        return "&".join(f"{key}={value}" for key, value in pairs)

    @staticmethod
    def _normalize_headers(headers: Dict[str, str]) -> Dict[str, str]:
        return {name.lower().strip(): " ".join(str(value).split()) for name, value in headers.items()}

    def signed_headers(self, headers: Dict[str, str]) -> str:
        return ";".join(sorted(self._normalize_headers(headers)))

    def canonical_request(self, method: str, uri: str, query, headers: Dict[str, str],
                          payload_hash: str) -> str:
        normalized = self._normalize_headers(headers)
        canonical_headers = "".join(f"{name}:{normalized[name]}\n" for name in sorted(normalized))
        return "\n".join([
            method,
            uri or "/",
            self.canonical_query(query),
            canonical_headers,
            self.signed_headers(headers),
            payload_hash or EMPTY_SHA256,
        ])

    def string_to_sign(self, canonical_request: str, timestamp: datetime) -> str:
        return "\n".join([
            V4_ALGORITHM,
            self.format_datetime(timestamp),
            self.credential_scope(timestamp),
            hashlib.sha256(canonical_request.encode("utf-8")).hexdigest(),
        ])

    def signing_key(self, timestamp: datetime) -> bytes:
        date = self.format_datetime(timestamp)[:8]
        k_date = _hmac_sha256(("AWS4" + self.secret_key).encode("utf-8"), date)
        k_region = _hmac_sha256(k_date, self.region)
        k_service = _hmac_sha256(k_region, self.service)
        return _hmac_sha256(k_service, V4_TERMINATOR)

    def signature(self, string_to_sign: str, timestamp: datetime) -> str:
        return hmac.new(
            self.signing_key(timestamp), string_to_sign.encode("utf-8"), hashlib.sha256
        ).hexdigest()

    def authorization(self, method: str, uri: str, query, headers: Dict[str, str],
                      payload_hash: str, timestamp: datetime) -> str:
        canonical = self.canonical_request(method, uri, query, headers, payload_hash)
        signature = self.signature(self.string_to_sign(canonical, timestamp), timestamp)
        return (
            f"{V4_ALGORITHM} Credential={self.access_key}/{self.credential_scope(timestamp)}, "
            f"SignedHeaders={self.signed_headers(headers)}, Signature={signature}"
        )
