"""ストレージクライアントの作成と認証情報の解決"""
import boto3
from typing import Optional, Dict
from botocore.credentials import ReadOnlyCredentials
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ..models.config import EndpointConfig
from ..utils.logger import LoggerManager
from .client import StorageClient
from .dialect import create_dialect
from .errors import ConfigError
from .transport import HttpTransport


class S3ClientManager:
    """エンドポイントごとのクライアントの作成と管理"""

    def __init__(self, endpoint_config: EndpointConfig, name: str = "default"):
        self.endpoint_config = endpoint_config
        self.name = name
        self.logger = LoggerManager.get_logger()
        self._client: Optional[StorageClient] = None

    def get_client(self) -> StorageClient:
        """クライアントを取得（必要に応じて作成）"""
        if self._client is None:
            self._client = self._create_client()
        return self._client

    def close(self):
        if self._client is not None:
            self._client.close()
            self._client = None

    def _create_client(self) -> StorageClient:
        config = self.endpoint_config
        credentials = self.resolve_credentials()
        dialect = create_dialect(
            config.dialect, config.host, credentials,
            scheme=config.scheme, region=config.region, service=config.service,
        )
        transport = HttpTransport(
            connect_timeout=config.connect_timeout,
            read_timeout=config.read_timeout,
            max_pool_connections=config.max_pool_connections,
            verify=config.verify_ssl,
        )
        self.logger.info(f"Storage client created: {self.name} ({config.dialect} {config.host})")
        return StorageClient(dialect, transport)

    def resolve_credentials(self) -> ReadOnlyCredentials:
        """AssumeRole → 明示的なキー → boto3 のセッション（プロファイル / デフォルト）の順で解決"""
        config = self.endpoint_config
        try:
            if config.assume_role:
                # AssumeRoleを使用
                temp_credentials = self._assume_role()
                if temp_credentials:
                    self.logger.info("Using assumed role credentials.")
                    return ReadOnlyCredentials(
                        temp_credentials['access_key_id'],
                        temp_credentials['secret_access_key'],
                        temp_credentials['session_token'],
                    )

            if config.access_key_id and config.secret_access_key:
                return ReadOnlyCredentials(
                    config.access_key_id, config.secret_access_key, config.session_token
                )

            # 通常の認証
            credentials = self._session().get_credentials()
            if credentials is None:
                raise NoCredentialsError()
            self.logger.info("Using default credentials.")
            return credentials.get_frozen_credentials()

        except NoCredentialsError as e:
            self.logger.error("AWS credentials not available.")
            raise ConfigError(f"Credentials not available for endpoint: {self.name}") from e
        except BotoCoreError as e:
            self.logger.error(f"Error resolving credentials: {e}")
            raise ConfigError(f"Error resolving credentials for endpoint {self.name}: {e}") from e

    def _session(self) -> boto3.Session:
        config = self.endpoint_config
        if config.access_key_id and config.secret_access_key:
            return boto3.Session(
                aws_access_key_id=config.access_key_id,
                aws_secret_access_key=config.secret_access_key,
                aws_session_token=config.session_token,
            )
        if config.profile:
            return boto3.Session(profile_name=config.profile)
        return boto3.Session()

    def _assume_role(self) -> Optional[Dict[str, str]]:
        """AssumeRoleを実行して一時的な認証情報を取得"""
        assume_role_config = self.endpoint_config.assume_role
        region = self.endpoint_config.region or "us-east-1"

        try:
            # STSクライアントを作成
            endpoint_url = f"https://sts.{region}.amazonaws.com"
            sts_client = self._session().client(
                'sts',
                region_name=region,
                endpoint_url=endpoint_url
            )

            # AssumeRoleを実行
            assume_role_params = {
                'RoleArn': assume_role_config.role_arn,
                'RoleSessionName': assume_role_config.session_name,
                'DurationSeconds': assume_role_config.duration_seconds,
            }

            if assume_role_config.external_id:
                assume_role_params['ExternalId'] = assume_role_config.external_id

            response = sts_client.assume_role(**assume_role_params)
            credentials = response['Credentials']

            self.logger.info(f"Assumed role successfully: {assume_role_config.role_arn}")

            return {
                'access_key_id': credentials['AccessKeyId'],
                'secret_access_key': credentials['SecretAccessKey'],
                'session_token': credentials['SessionToken']
            }

        except ClientError as e:
            self.logger.error(f"Error assuming role: {e}")
            return None
        except BotoCoreError as e:
            self.logger.error(f"Unexpected error during assume role: {e}")
            return None
