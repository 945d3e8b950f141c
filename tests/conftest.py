from urllib.parse import parse_qsl

import httpx
import pytest

from oidc_session import AuthConfigData, AuthConfiguration, AuthStateManager, create_login_repository

ISSUER = "https://idp.example.com"
DISCOVERY_URI = f"{ISSUER}/.well-known/openid-configuration"
REDIRECT_URI = "http://localhost:8765/callback"


@pytest.fixture
def anyio_backend():
    return "asyncio"


class FakeIdentityProvider:
    """An identity provider served through httpx.MockTransport."""

    def __init__(self, issuer: str = ISSUER):
        self.issuer = issuer
        self.requests: list[httpx.Request] = []
        self.discovery_status = 200
        self.registration_endpoint = True
        self.token_error: tuple[int, dict] | None = None
        self.registration_error: tuple[int, dict] | None = None
        self.issue_id_token = True
        self.expires_in = 3600
        self.issued = 0

    def discovery_document(self) -> dict:
        document = {
            "issuer": self.issuer,
            "authorization_endpoint": f"{self.issuer}/authorize",
            "token_endpoint": f"{self.issuer}/token",
            "end_session_endpoint": f"{self.issuer}/logout",
            "userinfo_endpoint": f"{self.issuer}/userinfo",
        }
        if self.registration_endpoint:
            document["registration_endpoint"] = f"{self.issuer}/register"
        return document

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/.well-known/openid-configuration":
            if self.discovery_status != 200:
                return httpx.Response(self.discovery_status)
            return httpx.Response(200, json=self.discovery_document())
        if path == "/token":
            if self.token_error is not None:
                status, body = self.token_error
                return httpx.Response(status, json=body)
            self.issued += 1
            body = {
                "access_token": f"access-{self.issued}",
                "token_type": "Bearer",
                "expires_in": self.expires_in,
                "refresh_token": f"refresh-{self.issued}",
            }
            if self.issue_id_token:
                body["id_token"] = f"id-{self.issued}"
            return httpx.Response(200, json=body)
        if path == "/register":
            if self.registration_error is not None:
                status, body = self.registration_error
                return httpx.Response(status, json=body)
            return httpx.Response(
                201,
                json={
                    "client_id": "registered-client",
                    "client_secret": "registered-secret",
                    "token_endpoint_auth_method": "client_secret_basic",
                },
            )
        return httpx.Response(404)

    def client_factory(
        self,
        headers: dict[str, str] | None = None,
        timeout: httpx.Timeout | None = None,
        auth: httpx.Auth | None = None,
    ) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler),
            headers=headers,
            timeout=timeout,
            auth=auth,
        )

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [request for request in self.requests if request.url.path == path]

    def token_forms(self) -> list[dict[str, str]]:
        return [dict(parse_qsl(request.content.decode())) for request in self.requests_to("/token")]


@pytest.fixture
def idp() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def static_config_data() -> AuthConfigData:
    return AuthConfigData(
        client_id="abc",
        redirect_uri=REDIRECT_URI,
        authorization_scope="openid profile",
        authorization_endpoint_uri=f"{ISSUER}/authorize",
        token_endpoint_uri=f"{ISSUER}/token",
        end_session_endpoint=f"{ISSUER}/logout",
    )


@pytest.fixture
def discovery_config_data() -> AuthConfigData:
    return AuthConfigData(
        client_id="abc",
        redirect_uri=REDIRECT_URI,
        authorization_scope="openid profile",
        discovery_uri=DISCOVERY_URI,
    )


@pytest.fixture
def make_repository(idp: FakeIdentityProvider):
    def _make(config_data: AuthConfigData, state_manager=None, snapshot_storage=None, http_client_factory=None):
        auth_config = AuthConfiguration(
            config_data,
            snapshot_storage=snapshot_storage,
            http_client_factory=http_client_factory or idp.client_factory,
        )
        return create_login_repository(auth_config, state_manager or AuthStateManager())

    return _make
