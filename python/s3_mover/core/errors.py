"""ストレージ操作の例外定義"""
from typing import Optional


class StorageError(Exception):
    """s3_mover の基底例外"""

    retryable = False


class TransportError(StorageError):
    """ネットワーク／タイムアウト等の通信エラー"""

    retryable = True


class ProtocolError(StorageError):
    """2xx 以外のステータスコード"""

    retryable = True

    def __init__(self, operation: str, target: str, status: int, request_id: Optional[str] = None):
        self.operation = operation
        self.target = target
        self.status = status
        self.request_id = request_id or ""
        super().__init__(
            f"{operation}: {target} StatusCode: {status} X-Amz-Request-Id: {self.request_id}"
        )


class DecodeError(StorageError):
    """レスポンスボディの解析失敗"""


class ConfigError(StorageError, ValueError):
    """設定不備"""


class CancellationError(StorageError):
    """呼び出し側による中断"""

    def __init__(self, message: str = "canceled"):
        super().__init__(message)
