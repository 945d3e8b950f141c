"""
Network calls to the identity provider.

AuthorizationService fetches the discovery document, performs token and
dynamic-registration requests, and builds browser launch descriptors. Every
call reports a ``(result, error)`` pair instead of raising, exactly one of
which is set.

与身份提供方之间的网络调用。
"""

import logging
import webbrowser
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import urlencode, urlparse

import httpx
from pydantic import ValidationError

from oidc_session._httpx_utils import HttpClientFactory, create_http_client
from oidc_session.client_auth import ClientAuthentication
from oidc_session.exceptions import (
    AuthorizationException,
    DiscoveryError,
    NetworkError,
    RegistrationError,
    TokenExchangeError,
)
from oidc_session.models import (
    AuthorizationRequest,
    ClientMetadata,
    ClientRegistration,
    ProviderConfiguration,
    TokenRequest,
    TokenResponse,
)

logger = logging.getLogger(__name__)


class BrowserMatcher(Protocol):
    """决定某个浏览器能否用于打开授权页面。"""

    def __call__(self, browser: webbrowser.BaseBrowser) -> bool: ...


class AnyBrowserMatcher:
    """接受任何可用的浏览器。"""

    def __call__(self, browser: webbrowser.BaseBrowser) -> bool:
        return True


@dataclass
class LaunchDescriptor:
    """交给浏览器展示的授权（或登出）地址。"""

    url: str
    browser_matcher: BrowserMatcher = field(default_factory=AnyBrowserMatcher)

    def launch(self) -> bool:
        """用匹配的浏览器打开地址，没有可用浏览器时返回 False。"""
        try:
            browser = webbrowser.get()
        except webbrowser.Error as e:
            logger.warning("No browser available to open the authorization page: %s", e)
            return False
        if not self.browser_matcher(browser):
            logger.warning("Default browser %r rejected by browser matcher", getattr(browser, "name", browser))
            return False
        return browser.open(self.url)


@dataclass
class AuthorizationServiceConfig:
    """AuthorizationService 的配置。"""

    browser_matcher: BrowserMatcher = field(default_factory=AnyBrowserMatcher)
    # 为 False 时，发现地址与 issuer 必须使用 https
    skip_issuer_https_check: bool = False
    http_client_factory: HttpClientFactory = create_http_client


def _error_fields(response: httpx.Response) -> tuple[str | None, str | None, str | None]:
    """从 OAuth 错误响应体中提取 error、error_description、error_uri。"""
    try:
        body = response.json()
    except ValueError:
        return None, None, None
    if not isinstance(body, dict):
        return None, None, None
    return body.get("error"), body.get("error_description"), body.get("error_uri")


class AuthorizationService:
    """执行发现、令牌交换与客户端注册请求。"""

    def __init__(self, config: AuthorizationServiceConfig | None = None):
        self.config = config if config is not None else AuthorizationServiceConfig()

    def _https_violation(self, uri: str | None) -> bool:
        if self.config.skip_issuer_https_check or uri is None:
            return False
        return urlparse(uri).scheme != "https"

    async def fetch_from_url(
        self, discovery_uri: str
    ) -> tuple[ProviderConfiguration | None, AuthorizationException | None]:
        """获取并解析 OIDC 发现文档。"""
        if self._https_violation(discovery_uri):
            return None, DiscoveryError(error_description=f"Discovery URI must use https: {discovery_uri}")

        try:
            async with self.config.http_client_factory() as client:
                response = await client.get(discovery_uri, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            logger.warning("Discovery request to %s failed: %s", discovery_uri, e)
            return None, DiscoveryError("network_error", f"Discovery request failed: {e}")

        if response.status_code != 200:
            return None, DiscoveryError(
                error_description=f"Discovery endpoint returned HTTP {response.status_code}"
            )

        try:
            document = response.json()
            if not isinstance(document, dict):
                raise ValueError("discovery document is not a JSON object")
            configuration = ProviderConfiguration.from_discovery_document(document)
        except ValueError as e:
            # ValidationError 与 JSONDecodeError 都是 ValueError 的子类
            return None, DiscoveryError("invalid_discovery_document", str(e))

        if self._https_violation(configuration.issuer):
            return None, DiscoveryError(error_description=f"Issuer must use https: {configuration.issuer}")

        return configuration, None

    async def perform_token_request(
        self,
        request: TokenRequest,
        client_authentication: ClientAuthentication,
    ) -> tuple[TokenResponse | None, AuthorizationException | None]:
        """向令牌端点发送授权码交换或刷新请求。"""
        headers = {"Accept": "application/json"}
        headers.update(client_authentication.request_headers(request.client_id))
        data = request.request_parameters()
        data.update(client_authentication.request_parameters(request.client_id))

        logger.debug("Token request (%s) to %s", request.grant_type, request.configuration.token_endpoint)
        try:
            async with self.config.http_client_factory() as client:
                response = await client.post(request.configuration.token_endpoint, data=data, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("Token request failed: %s", e)
            return None, NetworkError(error_description=f"Token request failed: {e}")

        if response.status_code >= 500:
            return None, NetworkError(error_description=f"Token endpoint returned HTTP {response.status_code}")
        if response.status_code != 200:
            error, description, error_uri = _error_fields(response)
            return None, TokenExchangeError(
                error,
                description or f"Token endpoint returned HTTP {response.status_code}",
                error_uri,
            )

        try:
            token_response = TokenResponse.model_validate_json(response.content)
        except ValidationError as e:
            return None, TokenExchangeError("invalid_token_response", str(e))
        if token_response.access_token is None and token_response.id_token is None:
            return None, TokenExchangeError("invalid_token_response", "Token response contains no token")

        return token_response, None

    async def register_client(
        self,
        configuration: ProviderConfiguration,
        metadata: ClientMetadata,
    ) -> tuple[ClientRegistration | None, AuthorizationException | None]:
        """动态客户端注册（RFC 7591）。"""
        if configuration.registration_endpoint is None:
            return None, RegistrationError(error_description="Provider has no registration endpoint")

        registration_data = metadata.model_dump(mode="json", exclude_none=True)
        try:
            async with self.config.http_client_factory() as client:
                response = await client.post(configuration.registration_endpoint, json=registration_data)
        except httpx.HTTPError as e:
            logger.warning("Registration request failed: %s", e)
            return None, NetworkError(error_description=f"Registration request failed: {e}")

        if response.status_code not in (200, 201):
            error, description, error_uri = _error_fields(response)
            return None, RegistrationError(
                error,
                description or f"Registration endpoint returned HTTP {response.status_code}",
                error_uri,
            )

        try:
            return ClientRegistration.model_validate_json(response.content), None
        except ValidationError as e:
            return None, RegistrationError(error_description=f"Invalid registration response: {e}")

    def get_authorization_request_descriptor(self, request: AuthorizationRequest) -> LaunchDescriptor:
        """构造打开授权页面的描述对象。"""
        return LaunchDescriptor(url=request.to_uri(), browser_matcher=self.config.browser_matcher)

    def get_end_session_request_descriptor(
        self,
        configuration: ProviderConfiguration,
        id_token_hint: str | None = None,
        post_logout_redirect_uri: str | None = None,
    ) -> LaunchDescriptor | None:
        """构造 RP 发起登出的地址；提供方没有 end_session_endpoint 时返回 None。"""
        if configuration.end_session_endpoint is None:
            return None
        params: dict[str, Any] = {}
        if id_token_hint is not None:
            params["id_token_hint"] = id_token_hint
        if post_logout_redirect_uri is not None:
            params["post_logout_redirect_uri"] = post_logout_redirect_uri
        url = configuration.end_session_endpoint
        if params:
            separator = "&" if "?" in url else "?"
            url = f"{url}{separator}{urlencode(params)}"
        return LaunchDescriptor(url=url, browser_matcher=self.config.browser_matcher)
