"""S3 Mover コアモジュール"""
from .client import StorageClient
from .dialect import CephDialect, Dialect, LegacyDialect, V4Dialect, create_dialect
from .dispatcher import BoundedDispatcher
from .errors import (
    CancellationError, ConfigError, DecodeError, ProtocolError, StorageError, TransportError,
)
from .listing import ListingCursor
from .multipart import MultipartEngine
from .prefix import PrefixTransfer, should_skip
from .s3_client import S3ClientManager
from .signer import LegacySigner, V4Signer
from .task_runner import TaskRunner
from .transport import HttpTransport

__all__ = [
    'StorageClient',
    'Dialect',
    'LegacyDialect',
    'V4Dialect',
    'CephDialect',
    'create_dialect',
    'BoundedDispatcher',
    'StorageError',
    'TransportError',
    'ProtocolError',
    'DecodeError',
    'ConfigError',
    'CancellationError',
    'ListingCursor',
    'MultipartEngine',
    'PrefixTransfer',
    'should_skip',
    'S3ClientManager',
    'LegacySigner',
    'V4Signer',
    'TaskRunner',
    'HttpTransport',
]
