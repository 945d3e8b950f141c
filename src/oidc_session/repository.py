"""
OIDC login session orchestration.

LoginRepository reconciles the configuration with the stored session,
bootstraps the provider configuration (static or discovered), builds
authorization requests, exchanges authorization codes, and hands out bearer
tokens with transparent refresh. It is also an ``httpx.Auth`` so a protected
resource client can use it directly.

Failures never propagate out of the public methods: they are recorded on the
session state, on ``AuthConfiguration.last_exception``, or raise the
``login_required`` signal.

OIDC 登录会话的协调器。
"""

import logging
import threading
from collections.abc import AsyncGenerator, Callable
from enum import Enum

import anyio
import httpx

from oidc_session._httpx_utils import LoopbackRewritingClientFactory, replace_localhost
from oidc_session.config import AuthConfiguration
from oidc_session.exceptions import (
    AuthorizationException,
    StateMismatchError,
    UnsupportedAuthenticationMethodError,
)
from oidc_session.models import (
    GRANT_TYPE_AUTHORIZATION_CODE,
    AuthorizationRequest,
    AuthorizationResponse,
    ClientMetadata,
    ProviderConfiguration,
    TokenRequest,
    TokenResponse,
)
from oidc_session.service import (
    AnyBrowserMatcher,
    AuthorizationService,
    AuthorizationServiceConfig,
    LaunchDescriptor,
)
from oidc_session.state import AuthState
from oidc_session.state_manager import AuthStateManager

logger = logging.getLogger(__name__)


class BootstrapPath(Enum):
    """bootstrap() 每次调用恰好走其中一条路径。"""

    ALREADY_ESTABLISHED = "already_established"
    STATIC = "static"
    DISCOVERY = "discovery"


class LoginRequiredSignal:
    """
    “需要重新登录”信号。

    电平触发：一旦置位，在被清除之前每次读取都返回 True。
    """

    def __init__(self):
        self._value = False
        self._event = anyio.Event()

    @property
    def value(self) -> bool:
        return self._value

    def __bool__(self) -> bool:
        return self._value

    def set(self) -> None:
        self._value = True
        self._event.set()

    def clear(self) -> None:
        self._value = False
        if self._event.is_set():
            self._event = anyio.Event()

    async def wait(self) -> None:
        """等待信号被置位；已经置位时立即返回。"""
        await self._event.wait()


class LoginRepository(httpx.Auth):
    """管理单个用户的 OIDC 登录会话，并为资源请求提供 Bearer 令牌。"""

    def __init__(
        self,
        auth_state_manager: AuthStateManager,
        auth_config: AuthConfiguration,
        auth_service: AuthorizationService,
    ):
        self._state = auth_state_manager
        self._config = auth_config
        self._auth_service = auth_service
        # 单槽位的值：只整体替换，不做读-改-写
        self._client_id: str | None = None
        self._auth_request: AuthorizationRequest | None = None
        self._bootstrap_lock = anyio.Lock()
        self._refresh_lock = anyio.Lock()
        self.login_required = LoginRequiredSignal()

    @property
    def client_id(self) -> str | None:
        return self._client_id

    @property
    def pending_request(self) -> AuthorizationRequest | None:
        return self._auth_request

    @property
    def auth_state(self) -> AuthState:
        return self._state.current

    # ---------- 配置变化检测 ----------

    async def reconcile_configuration(self) -> None:
        """配置发生变化时丢弃旧的会话状态，并保存新的配置快照。"""
        await self._state.load()
        if await self._config.has_changed():
            logger.info("Configuration change detected, discarding old state")
            self._client_id = None
            self._auth_request = None
            await self._state.replace(AuthState())
            await self._config.save()

    async def is_session_established(self) -> bool:
        await self._state.load()
        return not await self._config.has_changed() and self._state.current.provider_config is not None

    def last_configuration_error(self) -> AuthorizationException | None:
        return self._config.last_exception

    # ---------- 初始化 ----------

    def _resolve_bootstrap_path(self) -> BootstrapPath:
        if self._state.current.provider_config is not None:
            return BootstrapPath.ALREADY_ESTABLISHED
        if self._config.discovery_uri is None:
            return BootstrapPath.STATIC
        return BootstrapPath.DISCOVERY

    async def bootstrap(self) -> None:
        """建立提供方配置并确定 client_id。可重复调用。"""
        await self._state.load()
        # 并发调用串行执行，后到的调用会看到先到者建立的配置
        async with self._bootstrap_lock:
            path = self._resolve_bootstrap_path()
            logger.info("Initializing auth (%s)", path.value)

            if path is BootstrapPath.ALREADY_ESTABLISHED:
                logger.info("Auth configuration already established")
            elif path is BootstrapPath.STATIC:
                logger.info("Creating provider configuration from static configuration")
                configuration = ProviderConfiguration(
                    authorization_endpoint=self._config.authorization_endpoint_uri,
                    token_endpoint=self._config.token_endpoint_uri,
                    registration_endpoint=self._config.registration_endpoint_uri,
                    end_session_endpoint=self._config.end_session_endpoint,
                    userinfo_endpoint=self._config.user_info_endpoint_uri,
                )
                await self._state.replace(AuthState(provider_config=configuration))
                await self._register_client_if_needed()
            else:
                logger.info("Retrieving OpenID discovery doc")
                if not await self._retrieve_openid():
                    return
                await self._register_client_if_needed()

            self._client_id = self._resolve_client_id()

    async def _retrieve_openid(self) -> bool:
        configuration, ex = await self._auth_service.fetch_from_url(self._config.discovery_uri)
        return await self._handle_configuration_retrieval_result(configuration, ex)

    async def _handle_configuration_retrieval_result(
        self,
        configuration: ProviderConfiguration | None,
        ex: AuthorizationException | None,
    ) -> bool:
        # 无论成功与否都记录，成功时清除之前的错误
        self._config.last_exception = ex
        if configuration is None:
            logger.info("Failed to retrieve discovery document: %s", ex)
            return False
        logger.info("Discovery document retrieved")

        factory = self._config.http_client_factory
        if isinstance(factory, LoopbackRewritingClientFactory) and configuration.discovery_doc is not None:
            document = replace_localhost(configuration.discovery_doc, factory.replace_localhost_by)
            configuration = ProviderConfiguration.from_discovery_document(document)

        await self._state.replace(AuthState(provider_config=configuration))
        return True

    def _resolve_client_id(self) -> str | None:
        if self._config.client_id is not None:
            return self._config.client_id
        registration = self._state.current.last_registration_response
        return registration.client_id if registration is not None else None

    async def _register_client_if_needed(self) -> None:
        current = self._state.current
        if self._config.client_id is not None or current.last_registration_response is not None:
            return
        configuration = current.provider_config
        if configuration is None or configuration.registration_endpoint is None:
            logger.error("No client_id configured and provider does not support dynamic registration")
            return

        logger.info("Registering client dynamically")
        metadata = ClientMetadata(redirect_uris=[self._config.redirect_uri], scope=self._config.scope)
        registration, ex = await self._auth_service.register_client(configuration, metadata)
        await self._state.update_after_registration(registration, ex)
        if registration is None:
            logger.error("Dynamic client registration failed: %s", ex)

    # ---------- 授权请求 ----------

    def build_authorization_launch_descriptor(self) -> LaunchDescriptor | None:
        """构造新的授权请求并返回其启动描述；之前挂起的请求随即失效。"""
        configuration = self._state.current.provider_config
        if configuration is None:
            logger.info("Can't get provider configuration")
            return None
        client_id = self._client_id
        if client_id is None:
            logger.info("Can't build authorization request without a client id")
            return None

        request = AuthorizationRequest.build(
            configuration,
            client_id,
            self._config.redirect_uri,
            scope=self._config.scope,
        )
        self._auth_request = request
        return self._auth_service.get_authorization_request_descriptor(request)

    async def handle_redirect(self, uri: str) -> None:
        """处理浏览器重定向回来的 URI。"""
        request = self._auth_request
        if request is None:
            await self.on_authorization_result(
                None, StateMismatchError(error_description="No authorization request is pending")
            )
            return
        try:
            response = AuthorizationResponse.from_redirect_uri(uri, request)
        except AuthorizationException as ex:
            await self.on_authorization_result(None, ex)
            return
        await self.on_authorization_result(response, None)

    def _consume_pending_request(self, response: AuthorizationResponse) -> bool:
        pending = self._auth_request
        if pending is None or pending.state != response.request.state or pending.state != response.state:
            return False
        self._auth_request = None
        return True

    async def on_authorization_result(
        self,
        response: AuthorizationResponse | None,
        ex: AuthorizationException | None,
    ) -> None:
        """记录授权结果；成功时用授权码换取令牌。"""
        if response is not None and not self._consume_pending_request(response):
            logger.warning("Authorization response does not match the pending request, ignoring it")
            response = None
            ex = StateMismatchError(error_description="Authorization response does not match the pending request")
        if ex is not None:
            logger.info("Authorization failed: %s", ex)

        await self._state.update_after_authorization(response, ex)
        if response is not None:
            await self._exchange_authorization_code(response)

    async def _exchange_authorization_code(self, response: AuthorizationResponse) -> None:
        logger.info("Exchanging authorization code")
        await self._perform_token_request(response.create_token_exchange_request())

    async def _perform_token_request(self, request: TokenRequest) -> None:
        try:
            client_authentication = self._state.current.client_authentication
        except UnsupportedAuthenticationMethodError as ex:
            logger.debug(
                "Token request cannot be made, client authentication for the token "
                "endpoint could not be constructed (%s)",
                ex,
            )
            logger.error("Client authentication method is unsupported")
            return

        token_response, ex = await self._auth_service.perform_token_request(request, client_authentication)
        await self._handle_code_exchange_response(request, token_response, ex)

    async def _handle_code_exchange_response(
        self,
        request: TokenRequest,
        token_response: TokenResponse | None,
        ex: AuthorizationException | None,
    ) -> None:
        state = await self._state.update_after_token_response(token_response, ex)
        if not state.is_authorized:
            logger.error("Token request (%s) failed %s", request.grant_type, ex.error if ex is not None else "")
            return
        logger.info("Token request (%s) succeeded", request.grant_type)
        if request.grant_type == GRANT_TYPE_AUTHORIZATION_CODE:
            self.login_required.clear()

    # ---------- Bearer 令牌 ----------

    async def get_bearer_token(self) -> str:
        """返回当前访问令牌；需要时先尝试一次刷新。没有令牌时返回空字符串。"""
        await self._state.load()
        async with self._refresh_lock:
            current = self._state.current
            if current.needs_token_refresh and current.is_authorized and current.refresh_token is not None:
                logger.info("Refreshing access token")
                await self._refresh_access_token()

            if self._state.current.needs_token_refresh:
                self.login_required.set()
                logger.info("Refresh token expired")
            return self._state.current.access_token or ""

    async def _refresh_access_token(self) -> None:
        try:
            request = self._state.current.create_token_refresh_request(self._client_id)
        except ValueError as e:
            logger.error("Cannot build token refresh request: %s", e)
            return
        await self._perform_token_request(request)

    async def async_auth_flow(self, request: httpx.Request) -> AsyncGenerator[httpx.Request, httpx.Response]:
        """为资源请求加上 Authorization: Bearer 头。"""
        token = await self.get_bearer_token()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        yield request

    # ---------- 登出 ----------

    async def sign_out(self) -> None:
        """丢弃令牌，但保留提供方配置与注册信息。"""
        current = await self._state.load()
        self._auth_request = None
        await self._state.replace(
            AuthState(
                provider_config=current.provider_config,
                last_registration_response=current.last_registration_response,
            )
        )

    def build_end_session_launch_descriptor(self) -> LaunchDescriptor | None:
        """提供方支持时，返回在浏览器中结束会话的启动描述。"""
        current = self._state.current
        if current.provider_config is None:
            return None
        return self._auth_service.get_end_session_request_descriptor(
            current.provider_config,
            id_token_hint=current.id_token,
            post_logout_redirect_uri=self._config.end_session_redirect_uri,
        )


def create_login_repository(
    auth_config: AuthConfiguration,
    auth_state_manager: AuthStateManager | None = None,
) -> LoginRepository:
    """按配置创建 AuthorizationService 与 LoginRepository。"""
    logger.info("Creating authorization service")
    service_config = AuthorizationServiceConfig(
        browser_matcher=AnyBrowserMatcher(),
        skip_issuer_https_check=not auth_config.https_required,
        http_client_factory=auth_config.http_client_factory,
    )
    return LoginRepository(
        auth_state_manager if auth_state_manager is not None else AuthStateManager(),
        auth_config,
        AuthorizationService(service_config),
    )


class LoginRepositoryProvider:
    """
    延迟创建并缓存一个 LoginRepository。

    由调用方显式持有，而不是模块级全局变量；测试可以调用 reset() 重新开始。
    """

    def __init__(self, factory: Callable[[], LoginRepository]):
        self._factory = factory
        self._instance: LoginRepository | None = None
        self._lock = threading.Lock()

    def get(self) -> LoginRepository:
        with self._lock:
            if self._instance is None:
                self._instance = self._factory()
            return self._instance

    def reset(self) -> None:
        with self._lock:
            self._instance = None
