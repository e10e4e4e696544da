"""設定管理用のデータクラス"""
from dataclasses import dataclass, field, fields, replace
from typing import Any, Dict, List, Optional
import json
import logging
import os
import re

MiB = 1024 * 1024
PART_MIN_SIZE = 1 * MiB
PART_MAX_SIZE = 100 * MiB
THREAD_MIN_NUM = 1
THREAD_MAX_NUM = 500
MAX_RETRY_NUM = 5

DIALECT_NAMES = ("legacy", "v4", "ceph")

OPERATIONS = (
    "upload", "upload_dir", "download", "download_prefix", "copy", "copy_prefix",
    "move_prefix", "delete", "delete_prefix", "sync", "sync_prefix", "clean_uploads",
)

_config_logger = logging.getLogger("s3_mover.config")


@dataclass
class LoggingConfig:
    """ロギング設定"""
    level: str = "INFO"
    format: str = "%(asctime)s - %(levelname)s - %(message)s"
    file: Optional[str] = None


@dataclass
class AssumeRoleConfig:
    """AssumeRole設定"""
    role_arn: str
    session_name: str
    external_id: Optional[str] = None
    duration_seconds: int = 3600

    def __post_init__(self):
        """AssumeRole設定のバリデーション"""
        arn_pattern = r'^arn:aws:iam::[0-9]{12}:role\/[a-zA-Z0-9+=,.@_-]+$'
        if not re.match(arn_pattern, self.role_arn):
            raise ValueError(
                f"Invalid role_arn format: {self.role_arn}. "
                "Expected format: arn:aws:iam::ACCOUNT_ID:role/ROLE_NAME"
            )

        if not self.session_name or not self.session_name.strip():
            raise ValueError("session_name cannot be empty")

        # セッション名は2-64文字の英数字、アンダースコア、ハイフン、ピリオドのみ許可
        session_name_pattern = r'^[a-zA-Z0-9_.-]{2,64}$'
        if not re.match(session_name_pattern, self.session_name):
            raise ValueError(
                f"Invalid session_name: {self.session_name}. "
                "Must be 2-64 characters long and contain only alphanumeric characters, "
                "underscores, hyphens, and periods"
            )

        # duration_secondsのバリデーション（900秒から43200秒の範囲）
        if not (900 <= self.duration_seconds <= 43200):
            raise ValueError(
                f"Invalid duration_seconds: {self.duration_seconds}. "
                "Must be between 900 and 43200 seconds (15 minutes to 12 hours)"
            )


@dataclass
class EndpointConfig:
    """接続先エンドポイントの設定"""
    dialect: str
    host: str
    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None
    session_token: Optional[str] = None
    region: Optional[str] = None
    service: Optional[str] = None
    profile: Optional[str] = None
    assume_role: Optional[AssumeRoleConfig] = None
    scheme: str = "https"
    verify_ssl: bool = True
    connect_timeout: int = 30
    read_timeout: int = 300
    max_pool_connections: int = 200

    def __post_init__(self):
        if self.dialect not in DIALECT_NAMES:
            raise ValueError(f"Invalid dialect: {self.dialect}. Expected one of {DIALECT_NAMES}")
        if not self.host:
            raise ValueError("host cannot be empty")
        if self.scheme not in ("http", "https"):
            raise ValueError(f"Invalid scheme: {self.scheme}")
        if self.assume_role:
            if isinstance(self.assume_role, dict):
                self.assume_role = AssumeRoleConfig(**self.assume_role)
            elif not isinstance(self.assume_role, AssumeRoleConfig):
                raise TypeError(
                    f"assume_role must be dict or AssumeRoleConfig, got {type(self.assume_role)}"
                )


def _as_bool(value: Any) -> Optional[bool]:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    return None


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass
class TransferOptions:
    """転送オプション

    不正な値はエラーにせず警告を出して既定値に戻す。
    part_size / thread_num の None は「操作ごとの既定値」を意味する。
    """
    acl: Optional[str] = None
    disposition: Optional[str] = None
    part_size: Optional[int] = None
    thread_num: Optional[int] = None
    replace: bool = False
    suffix: str = ""
    full_path: bool = False
    expired: int = 0
    max_retries: int = MAX_RETRY_NUM
    multipart_threshold: int = 100 * MiB
    enable_progress: bool = True
    exclude_patterns: List[str] = field(default_factory=list)

    def __post_init__(self):
        defaults = TransferOptions.__dataclass_fields__

        for name in ("part_size", "thread_num"):
            raw = getattr(self, name)
            if raw is None:
                continue
            value = _as_int(raw)
            if value is None or value <= 0:
                _config_logger.warning(f"Invalid {name}: {raw!r}, falling back to default")
            setattr(self, name, value if value and value > 0 else None)

        for name in ("expired", "max_retries", "multipart_threshold"):
            raw = getattr(self, name)
            value = _as_int(raw)
            minimum = 1 if name == "max_retries" else 0
            if value is None or value < minimum:
                _config_logger.warning(f"Invalid {name}: {raw!r}, falling back to default")
                value = defaults[name].default
            setattr(self, name, value)

        for name in ("replace", "full_path", "enable_progress"):
            raw = getattr(self, name)
            value = _as_bool(raw)
            if value is None:
                _config_logger.warning(f"Invalid {name}: {raw!r}, falling back to default")
                value = defaults[name].default
            setattr(self, name, value)

        self.suffix = str(self.suffix or "").lower()
        self.acl = self.acl or None
        self.disposition = self.disposition or None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TransferOptions":
        """未知のキーは無視して読み込む"""
        data = data or {}
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            _config_logger.warning(f"Ignoring unknown options: {', '.join(unknown)}")
        return cls(**{k: v for k, v in data.items() if k in known})

    def merged(self, overrides: Optional[Dict[str, Any]]) -> "TransferOptions":
        """タスク単位の上書きを適用したコピー"""
        if not overrides:
            return self
        known = {f.name for f in fields(self)}
        return replace(self, **{k: v for k, v in overrides.items() if k in known})

    def suffix_list(self) -> List[str]:
        return [s for s in self.suffix.split(",") if s]

    def matches_suffix(self, name: str) -> bool:
        suffixes = self.suffix_list()
        if not suffixes:
            return True
        return name.lower().endswith(tuple(suffixes))


@dataclass
class TransferTask:
    """個別の転送タスク"""
    # 必須フィールド（デフォルト値なし）を先に
    name: str
    operation: str

    # オプションフィールド（デフォルト値あり）を後に
    bucket: str = ""
    source: Optional[str] = None  # ローカルパス または /bucket/key
    key: Optional[str] = None  # 単一オブジェクトの場合
    prefix: Optional[str] = None  # プレフィックス全体の場合
    local_path: Optional[str] = None  # ダウンロード先
    endpoint: str = "default"
    target_endpoint: Optional[str] = None  # sync の転送先
    description: Optional[str] = None
    enabled: bool = True
    options: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.operation not in OPERATIONS:
            raise ValueError(f"Invalid operation: {self.operation}. Expected one of {OPERATIONS}")
        if self.operation.startswith("sync") and not self.target_endpoint:
            raise ValueError(f"target_endpoint is required for {self.operation}: {self.name}")


@dataclass
class Config:
    """メイン設定クラス"""
    logging: LoggingConfig
    endpoints: Dict[str, EndpointConfig]
    options: TransferOptions
    tasks: List[TransferTask]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        endpoints = {
            name: EndpointConfig(**endpoint)
            for name, endpoint in data.get("endpoints", {}).items()
        }
        config = cls(
            logging=LoggingConfig(**data.get("logging", {})),
            endpoints=endpoints,
            options=TransferOptions.from_dict(data.get("options", {})),
            tasks=[TransferTask(**task) for task in data.get("tasks", [])],
        )
        for task in config.tasks:
            for name in (task.endpoint, task.target_endpoint):
                if name and name not in config.endpoints:
                    raise ValueError(f"Unknown endpoint '{name}' in task: {task.name}")
        return config

    @classmethod
    def from_file(cls, config_path: str) -> 'Config':
        """設定ファイルから読み込み"""
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file {config_path} not found.")

        try:
            with open(config_path, "r", encoding="utf-8") as file:
                data = json.load(file)
            return cls.from_dict(data)

        except json.JSONDecodeError as e:
            raise ValueError(f"Error decoding JSON from {config_path}: {e}")
        except (TypeError, ValueError) as e:
            raise ValueError(f"Error loading configuration: {e}")
