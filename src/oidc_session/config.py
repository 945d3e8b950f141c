"""
Static client configuration and change detection.

AuthConfiguration holds the active configuration source, the transport used
for provider calls, and the last discovery error. The last configuration
that was in effect is kept in a snapshot storage; a difference between the
two means any stored session belongs to a different provider setup.

静态客户端配置与配置变化检测。
"""

import logging

import anyio
from pydantic import ValidationError

from oidc_session._httpx_utils import HttpClientFactory, create_http_client
from oidc_session.exceptions import AuthorizationException, InvalidConfigurationError
from oidc_session.models import AuthConfigData
from oidc_session.storage import ConfigSnapshotStorage, InMemoryConfigSnapshotStorage

logger = logging.getLogger(__name__)


class AuthConfiguration:
    """当前生效的认证配置，以及用于检测变化的已保存快照。"""

    def __init__(
        self,
        auth_config_data: AuthConfigData,
        snapshot_storage: ConfigSnapshotStorage | None = None,
        http_client_factory: HttpClientFactory = create_http_client,
    ):
        self.auth_config_data = auth_config_data
        self.http_client_factory = http_client_factory
        self._snapshot_storage: ConfigSnapshotStorage = (
            snapshot_storage if snapshot_storage is not None else InMemoryConfigSnapshotStorage()
        )
        # 最近一次获取发现文档时的错误，成功时为 None
        self.last_exception: AuthorizationException | None = None

    @classmethod
    async def load(
        cls,
        path: str | anyio.Path,
        snapshot_storage: ConfigSnapshotStorage | None = None,
        http_client_factory: HttpClientFactory = create_http_client,
    ) -> "AuthConfiguration":
        """从 JSON 文件读取静态配置。配置无效时抛出 InvalidConfigurationError。"""
        content = await anyio.Path(path).read_text(encoding="utf-8")
        try:
            data = AuthConfigData.model_validate_json(content)
        except ValidationError as e:
            raise InvalidConfigurationError(f"Invalid auth configuration in {path}: {e}") from e
        logger.debug("Loaded auth configuration from %s", path)
        return cls(data, snapshot_storage=snapshot_storage, http_client_factory=http_client_factory)

    @property
    def client_id(self) -> str | None:
        return self.auth_config_data.client_id

    @property
    def redirect_uri(self) -> str:
        return self.auth_config_data.redirect_uri

    @property
    def end_session_redirect_uri(self) -> str | None:
        return self.auth_config_data.end_session_redirect_uri

    @property
    def scope(self) -> str:
        return self.auth_config_data.authorization_scope

    @property
    def discovery_uri(self) -> str | None:
        return self.auth_config_data.discovery_uri

    @property
    def authorization_endpoint_uri(self) -> str | None:
        return self.auth_config_data.authorization_endpoint_uri

    @property
    def token_endpoint_uri(self) -> str | None:
        return self.auth_config_data.token_endpoint_uri

    @property
    def registration_endpoint_uri(self) -> str | None:
        return self.auth_config_data.registration_endpoint_uri

    @property
    def end_session_endpoint(self) -> str | None:
        return self.auth_config_data.end_session_endpoint

    @property
    def user_info_endpoint_uri(self) -> str | None:
        return self.auth_config_data.user_info_endpoint_uri

    @property
    def https_required(self) -> bool:
        return self.auth_config_data.https_required

    async def stored(self) -> AuthConfigData | None:
        """上一次保存的配置快照。"""
        return await self._snapshot_storage.get_snapshot()

    async def is_not_stored(self) -> bool:
        return await self.stored() is None

    async def has_changed(self) -> bool:
        """没有快照，或快照与当前配置不同。"""
        stored = await self.stored()
        return stored is None or stored != self.auth_config_data

    async def save(self) -> None:
        """把当前配置保存为新的快照。"""
        await self._snapshot_storage.set_snapshot(self.auth_config_data)
