import base64
from urllib.parse import parse_qsl

import httpx
import pytest

from oidc_session._httpx_utils import create_http_client, replace_localhost
from oidc_session.client_auth import ClientSecretBasic, ClientSecretPost, NoClientAuthentication
from oidc_session.exceptions import DiscoveryError, NetworkError, RegistrationError, TokenExchangeError
from oidc_session.models import ClientMetadata, ProviderConfiguration, TokenRequest
from oidc_session.service import AuthorizationService, AuthorizationServiceConfig, LaunchDescriptor

from .conftest import DISCOVERY_URI, ISSUER

CONFIGURATION = ProviderConfiguration(
    authorization_endpoint=f"{ISSUER}/authorize",
    token_endpoint=f"{ISSUER}/token",
    registration_endpoint=f"{ISSUER}/register",
    end_session_endpoint=f"{ISSUER}/logout",
)


def refresh_request() -> TokenRequest:
    return TokenRequest(
        configuration=CONFIGURATION,
        client_id="abc",
        grant_type="refresh_token",
        refresh_token="refresh",
    )


def failing_factory(headers=None, timeout=None, auth=None):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


@pytest.fixture
def service(idp) -> AuthorizationService:
    return AuthorizationService(AuthorizationServiceConfig(http_client_factory=idp.client_factory))


class TestDiscovery:
    @pytest.mark.anyio
    async def test_success(self, service, idp):
        configuration, ex = await service.fetch_from_url(DISCOVERY_URI)

        assert ex is None
        assert configuration.issuer == ISSUER
        assert configuration.token_endpoint == f"{ISSUER}/token"
        assert configuration.registration_endpoint == f"{ISSUER}/register"
        assert configuration.discovery_doc == idp.discovery_document()

    @pytest.mark.anyio
    async def test_http_error_status(self, service, idp):
        idp.discovery_status = 404
        configuration, ex = await service.fetch_from_url(DISCOVERY_URI)

        assert configuration is None
        assert isinstance(ex, DiscoveryError)

    @pytest.mark.anyio
    async def test_network_failure(self):
        service = AuthorizationService(AuthorizationServiceConfig(http_client_factory=failing_factory))
        configuration, ex = await service.fetch_from_url(DISCOVERY_URI)

        assert configuration is None
        assert isinstance(ex, DiscoveryError)
        assert ex.error == "network_error"

    @pytest.mark.anyio
    async def test_https_required_for_discovery_uri(self, service, idp):
        configuration, ex = await service.fetch_from_url("http://idp.example.com/.well-known/openid-configuration")

        assert configuration is None
        assert isinstance(ex, DiscoveryError)
        assert idp.requests == []

    @pytest.mark.anyio
    async def test_https_check_can_be_skipped(self, idp):
        idp.issuer = "http://idp.example.com"
        service = AuthorizationService(
            AuthorizationServiceConfig(skip_issuer_https_check=True, http_client_factory=idp.client_factory)
        )
        configuration, ex = await service.fetch_from_url("http://idp.example.com/.well-known/openid-configuration")

        assert ex is None
        assert configuration.issuer == "http://idp.example.com"


class TestTokenRequest:
    @pytest.mark.anyio
    async def test_public_client_sends_client_id(self, service, idp):
        token, ex = await service.perform_token_request(refresh_request(), NoClientAuthentication())

        assert ex is None
        assert token.access_token == "access-1"
        assert token.access_token_expiration_time is not None
        assert idp.token_forms() == [{"grant_type": "refresh_token", "refresh_token": "refresh", "client_id": "abc"}]

    @pytest.mark.anyio
    async def test_client_secret_basic(self, service, idp):
        await service.perform_token_request(refresh_request(), ClientSecretBasic("secret"))

        request = idp.requests_to("/token")[0]
        expected = base64.b64encode(b"abc:secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert "client_id" not in dict(parse_qsl(request.content.decode()))

    @pytest.mark.anyio
    async def test_client_secret_post(self, service, idp):
        await service.perform_token_request(refresh_request(), ClientSecretPost("secret"))

        form = idp.token_forms()[0]
        assert form["client_id"] == "abc"
        assert form["client_secret"] == "secret"

    @pytest.mark.anyio
    async def test_provider_error(self, service, idp):
        idp.token_error = (400, {"error": "invalid_grant", "error_description": "refresh token expired"})
        token, ex = await service.perform_token_request(refresh_request(), NoClientAuthentication())

        assert token is None
        assert isinstance(ex, TokenExchangeError)
        assert ex.error == "invalid_grant"
        assert ex.error_description == "refresh token expired"

    @pytest.mark.anyio
    async def test_server_error_is_not_a_token_error(self, service, idp):
        idp.token_error = (503, {})
        token, ex = await service.perform_token_request(refresh_request(), NoClientAuthentication())

        assert token is None
        assert isinstance(ex, NetworkError)

    @pytest.mark.anyio
    async def test_network_failure(self):
        service = AuthorizationService(AuthorizationServiceConfig(http_client_factory=failing_factory))
        token, ex = await service.perform_token_request(refresh_request(), NoClientAuthentication())

        assert token is None
        assert isinstance(ex, NetworkError)


class TestRegistration:
    @pytest.mark.anyio
    async def test_success(self, service, idp):
        registration, ex = await service.register_client(
            CONFIGURATION, ClientMetadata(redirect_uris=["app://callback"], scope="openid")
        )

        assert ex is None
        assert registration.client_id == "registered-client"
        body = idp.requests_to("/register")[0].read()
        assert b'"redirect_uris":["app://callback"]' in body.replace(b" ", b"")

    @pytest.mark.anyio
    async def test_without_registration_endpoint(self, service, idp):
        configuration = CONFIGURATION.model_copy(update={"registration_endpoint": None})
        registration, ex = await service.register_client(configuration, ClientMetadata(redirect_uris=["app://cb"]))

        assert registration is None
        assert isinstance(ex, RegistrationError)
        assert idp.requests == []


def test_end_session_descriptor(service):
    descriptor = service.get_end_session_request_descriptor(
        CONFIGURATION, id_token_hint="id-token", post_logout_redirect_uri="app://logout"
    )
    assert descriptor.url == f"{ISSUER}/logout?id_token_hint=id-token&post_logout_redirect_uri=app%3A%2F%2Flogout"

    configuration = CONFIGURATION.model_copy(update={"end_session_endpoint": None})
    assert service.get_end_session_request_descriptor(configuration) is None


def test_launch_descriptor_respects_browser_matcher(monkeypatch):
    opened = []

    class FakeBrowser:
        name = "fake"

        def open(self, url):
            opened.append(url)
            return True

    monkeypatch.setattr("webbrowser.get", lambda: FakeBrowser())

    assert LaunchDescriptor(url="https://idp/authorize").launch()
    assert not LaunchDescriptor(url="https://idp/other", browser_matcher=lambda browser: False).launch()
    assert opened == ["https://idp/authorize"]


def test_replace_localhost():
    document = {
        "issuer": "http://localhost:8080/realms/test",
        "token_endpoint": "http://127.0.0.1:8080/token",
        "jwks_uri": "https://idp.example.com/certs",
        "scopes_supported": ["openid"],
    }
    rewritten = replace_localhost(document, "10.0.2.2")

    assert rewritten["issuer"] == "http://10.0.2.2:8080/realms/test"
    assert rewritten["token_endpoint"] == "http://10.0.2.2:8080/token"
    assert rewritten["jwks_uri"] == "https://idp.example.com/certs"
    assert document["issuer"] == "http://localhost:8080/realms/test"


@pytest.mark.anyio
async def test_default_http_client():
    async with create_http_client() as client:
        assert client.follow_redirects
        assert client.timeout.connect == 30.0
