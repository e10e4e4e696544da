"""HTTP送受信（botocore の URLLib3Session を使用）"""
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

from botocore.awsrequest import AWSRequest
from botocore.exceptions import BotoCoreError
from botocore.httpsession import URLLib3Session
from urllib3.exceptions import HTTPError as URLLib3HTTPError

from ..utils.logger import LoggerManager
from .errors import CancellationError, TransportError

# 送受信の途中で中断シグナルを確認する単位
CHUNK_SIZE = 64 * 1024


@dataclass
class HttpResponse:
    """1回のHTTP応答（ヘッダー名は小文字に正規化）"""
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""

    def __post_init__(self):
        self.headers = {str(name).lower(): value for name, value in dict(self.headers).items()}

    def header(self, name: str, default: str = "") -> str:
        return self.headers.get(name.lower(), default)


class CancellableBody:
    """送信ボディを CHUNK_SIZE ずつ読み出すファイルライクオブジェクト

    読み出しのたびに中断シグナルを確認し、立っていれば CancellationError を送出する。
    """

    def __init__(self, data: bytes, cancel_event: threading.Event, chunk_size: int = CHUNK_SIZE):
        self._data = memoryview(data)
        self._cancel_event = cancel_event
        self._chunk_size = chunk_size
        self._position = 0

    def __len__(self) -> int:
        return len(self._data)

    def read(self, amt: Optional[int] = None) -> bytes:
        if self._cancel_event.is_set():
            raise CancellationError()
        if amt is None or amt < 0 or amt > self._chunk_size:
            amt = self._chunk_size
        chunk = self._data[self._position:self._position + amt]
        self._position += len(chunk)
        return bytes(chunk)

    def seek(self, offset: int, whence: int = 0) -> int:
        if whence == 1:
            offset += self._position
        elif whence == 2:
            offset += len(self._data)
        self._position = max(0, min(offset, len(self._data)))
        return self._position

    def tell(self) -> int:
        return self._position


class HttpTransport:
    """接続プール付きのHTTPクライアント"""

    def __init__(self, connect_timeout: int = 30, read_timeout: int = 300,
                 max_pool_connections: int = 200, verify: bool = True):
        self.logger = LoggerManager.get_logger()
        self._session = URLLib3Session(
            verify=verify,
            timeout=(connect_timeout, read_timeout),
            max_pool_connections=max_pool_connections,
        )

    def send(self, method: str, url: str, headers: Dict[str, str],
             body: Union[bytes, str, None] = b"",
             cancel_event: Optional[threading.Event] = None) -> HttpResponse:
        """リクエストを1回送信

        中断シグナルは送信前とボディの送受信中に確認し、立った時点で接続を閉じて
        CancellationError を送出する。
        """
        if cancel_event is not None and cancel_event.is_set():
            raise CancellationError()
        if isinstance(body, str):
            body = body.encode("utf-8")

        data = body or None
        if data is not None and cancel_event is not None:
            data = CancellableBody(data, cancel_event)
        request = AWSRequest(method=method, url=url, headers=headers, data=data,
                             stream_output=True)
        self.logger.debug(f"{method} {url}")
        try:
            response = self._session.send(request.prepare())
        except BotoCoreError as e:
            if isinstance(e.kwargs.get("error"), CancellationError):
                self.logger.debug(f"Canceled while sending: {method} {url}")
                raise e.kwargs["error"] from None
            raise TransportError(f"{method} {url} Error: {e}") from e

        return HttpResponse(
            status=response.status_code,
            headers=dict(response.headers.items()),
            body=self._read_body(response, method, url, cancel_event),
        )

    def _read_body(self, response, method: str, url: str,
                   cancel_event: Optional[threading.Event]) -> bytes:
        chunks = []
        try:
            for chunk in response.raw.stream(CHUNK_SIZE, decode_content=False):
                if cancel_event is not None and cancel_event.is_set():
                    response.raw.close()
                    self.logger.debug(f"Canceled while receiving: {method} {url}")
                    raise CancellationError()
                chunks.append(chunk)
        except (URLLib3HTTPError, OSError) as e:
            response.raw.close()
            raise TransportError(f"{method} {url} Error: {e}") from e
        return b"".join(chunks)

    def close(self):
        self._session.close()
