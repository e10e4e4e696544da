"""ベンダー方言ごとのURL組み立てと署名の適用"""
import re
from datetime import datetime
from email.utils import format_datetime
from typing import Dict, List, Optional, Sequence, Tuple
from urllib.parse import quote

from botocore.credentials import ReadOnlyCredentials

from .errors import ConfigError
from .signer import LegacySigner, V4Signer, sha256_hex

# レガシー署名でリソースに含めるサブリソース
SIGNED_SUB_RESOURCES = ("acl", "delete", "partNumber", "uploadId", "uploads")

QueryParams = Sequence[Tuple[str, Optional[str]]]

DEFAULT_REGION = "us-east-1"
DEFAULT_SERVICE = "s3"

# us-east-1, ap-northeast-1, us-gov-west-1, cn-north-1
REGION_PATTERN = re.compile(r"^[a-z]{2}(-gov)?-[a-z]+-\d+$")


def quote_key(key: str) -> str:
    return quote(key, safe="/~")


def region_from_host(host: str) -> str:
    """ホスト名のラベルからリージョンを推定（見つからなければ us-east-1）

    s3.ap-northeast-1.amazonaws.com や s3-us-west-2.amazonaws.com の形式に対応。
    s3.amazonaws.com や minio.example.com はデフォルトになる。
    """
    for label in host.split(":")[0].split("."):
        if label.startswith("s3-"):
            label = label[len("s3-"):]
        if REGION_PATTERN.match(label):
            return label
    return DEFAULT_REGION


def render_query(query: Optional[QueryParams]) -> str:
    """クエリ文字列を組み立てる（値 None はフラグ扱い）"""
    if not query:
        return ""
    parts = []
    for name, value in query:
        if value is None:
            parts.append(quote(name, safe="-_.~"))
        else:
            parts.append(f"{quote(name, safe='-_.~')}={quote(str(value), safe='-_.~')}")
    return "?" + "&".join(parts)


class Dialect:
    """方言の基底クラス（URLレイアウト + 署名 + ヘッダー名）"""

    name = ""
    virtual_host = True
    acl_header = "x-amz-acl"
    request_id_header = "x-amz-request-id"
    vendor_prefix = "x-amz-"

    def __init__(self, host: str, credentials: ReadOnlyCredentials, scheme: str = "https"):
        self.host = host
        self.credentials = credentials
        self.scheme = scheme

    def netloc(self, bucket: str = "") -> str:
        if bucket and self.virtual_host:
            return f"{bucket}.{self.host}"
        return self.host

    def path(self, bucket: str = "", key: str = "") -> str:
        """送信時のパス（URLエンコード済み）"""
        if self.virtual_host or not bucket:
            return "/" + quote_key(key)
        return f"/{bucket}/{quote_key(key)}"

    def url(self, bucket: str = "", key: str = "", query: Optional[QueryParams] = None) -> str:
        return f"{self.scheme}://{self.netloc(bucket)}{self.path(bucket, key)}{render_query(query)}"

    def location(self, bucket: str, key: str) -> str:
        return self.url(bucket, key)

    def sign(self, method: str, bucket: str, key: str, query: Optional[QueryParams],
             headers: Dict[str, str], body: bytes, now: datetime) -> Dict[str, str]:
        raise NotImplementedError


class LegacyDialect(Dialect):
    """AWS互換（バーチャルホスト形式 + HMAC-SHA1署名）"""

    name = "legacy"

    def __init__(self, host: str, credentials: ReadOnlyCredentials, scheme: str = "https"):
        super().__init__(host, credentials, scheme)
        self.signer = LegacySigner(
            credentials.access_key, credentials.secret_key, vendor_prefix=self.vendor_prefix
        )

    @staticmethod
    def sub_resource(query: Optional[QueryParams]) -> str:
        signed = sorted(
            (name, value) for name, value in (query or []) if name in SIGNED_SUB_RESOURCES
        )
        if not signed:
            return ""
        return "?" + "&".join(name if value is None else f"{name}={value}" for name, value in signed)

    def sign(self, method, bucket, key, query, headers, body, now):
        signed = dict(headers)
        signed["Date"] = format_datetime(now, usegmt=True)
        if self.credentials.token:
            signed["x-amz-security-token"] = self.credentials.token

        to_sign = {
            "content-md5": signed.get("Content-MD5", ""),
            "content-type": signed.get("Content-Type", ""),
            "date": signed["Date"],
        }
        for name, value in signed.items():
            if name.lower().startswith(self.vendor_prefix):
                to_sign[name.lower()] = value

        sub = self.sub_resource(query)
        if key:
            auth = self.signer.authorization(method, to_sign, bucket, quote_key(key) + sub)
        elif bucket:
            auth = self.signer.authorization(method, to_sign, bucket + "/" + sub)
        else:
            auth = self.signer.authorization(method, to_sign)
        signed["Authorization"] = auth
        return signed


class CephDialect(LegacyDialect):
    """Ceph / Tencent 互換（パス形式 + HMAC-SHA1署名）"""

    name = "ceph"
    virtual_host = False


class V4Dialect(Dialect):
    """AWS（バーチャルホスト形式 + Signature V4）"""

    name = "v4"

    def __init__(self, host: str, credentials: ReadOnlyCredentials, scheme: str = "https",
                 region: Optional[str] = None, service: Optional[str] = None):
        super().__init__(host, credentials, scheme)
        self.service = service or DEFAULT_SERVICE
        self.region = region or region_from_host(host)
        self.signer = V4Signer(credentials.access_key, credentials.secret_key,
                               self.region, self.service)

    def sign(self, method, bucket, key, query, headers, body, now):
        payload_hash = sha256_hex(body)
        signed = dict(headers)
        signed["host"] = self.netloc(bucket)
        signed["x-amz-date"] = self.signer.format_datetime(now)
        signed["x-amz-content-sha256"] = payload_hash
        if self.credentials.token:
            signed["x-amz-security-token"] = self.credentials.token

        to_sign = {
            name: value for name, value in signed.items()
            if name.lower() in ("host", "content-md5", "content-type")
            or name.lower().startswith(self.vendor_prefix)
        }
        pairs: List[Tuple[str, str]] = [(name, value or "") for name, value in (query or [])]
        signed["Authorization"] = self.signer.authorization(
            method, self.path(bucket, key), pairs, to_sign, payload_hash, now
        )
        return signed


DIALECTS = {
    LegacyDialect.name: LegacyDialect,
    V4Dialect.name: V4Dialect,
    CephDialect.name: CephDialect,
}


def create_dialect(name: str, host: str, credentials: ReadOnlyCredentials,
                   scheme: str = "https", region: Optional[str] = None,
                   service: Optional[str] = None) -> Dialect:
    """方言名からインスタンスを生成"""
    if name not in DIALECTS:
        raise ConfigError(f"Unknown dialect: {name}. Expected one of {sorted(DIALECTS)}")
    if name == V4Dialect.name:
        return V4Dialect(host, credentials, scheme, region=region, service=service)
    return DIALECTS[name](host, credentials, scheme)
