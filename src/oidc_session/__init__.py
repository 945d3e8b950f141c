"""
OAuth2 / OpenID Connect client-side session management.

Implements the authorization code flow with PKCE, discovery, token refresh
and a bearer-token ``httpx.Auth`` for protected resource clients.
"""

from oidc_session._httpx_utils import LoopbackRewritingClientFactory, create_http_client
from oidc_session.config import AuthConfiguration
from oidc_session.exceptions import (
    AuthorizationCancelledError,
    AuthorizationDeniedError,
    AuthorizationException,
    AuthorizationExceptionType,
    AuthorizationRequestError,
    DiscoveryError,
    InvalidConfigurationError,
    NetworkError,
    RegistrationError,
    StateMismatchError,
    TokenExchangeError,
    UnsupportedAuthenticationMethodError,
)
from oidc_session.models import (
    AuthConfigData,
    AuthorizationRequest,
    AuthorizationResponse,
    ClientRegistration,
    ProviderConfiguration,
    TokenRequest,
    TokenResponse,
)
from oidc_session.repository import (
    BootstrapPath,
    LoginRepository,
    LoginRepositoryProvider,
    LoginRequiredSignal,
    create_login_repository,
)
from oidc_session.service import AnyBrowserMatcher, AuthorizationService, AuthorizationServiceConfig, LaunchDescriptor
from oidc_session.state import AuthState
from oidc_session.state_manager import AuthStateManager
from oidc_session.storage import (
    FileAuthStateStorage,
    FileConfigSnapshotStorage,
    InMemoryAuthStateStorage,
    InMemoryConfigSnapshotStorage,
)

__all__ = [
    "AnyBrowserMatcher",
    "AuthConfigData",
    "AuthConfiguration",
    "AuthState",
    "AuthStateManager",
    "AuthorizationCancelledError",
    "AuthorizationDeniedError",
    "AuthorizationException",
    "AuthorizationExceptionType",
    "AuthorizationRequest",
    "AuthorizationRequestError",
    "AuthorizationResponse",
    "AuthorizationService",
    "AuthorizationServiceConfig",
    "BootstrapPath",
    "ClientRegistration",
    "DiscoveryError",
    "FileAuthStateStorage",
    "FileConfigSnapshotStorage",
    "InMemoryAuthStateStorage",
    "InMemoryConfigSnapshotStorage",
    "InvalidConfigurationError",
    "LaunchDescriptor",
    "LoginRepository",
    "LoginRepositoryProvider",
    "LoginRequiredSignal",
    "LoopbackRewritingClientFactory",
    "NetworkError",
    "ProviderConfiguration",
    "RegistrationError",
    "StateMismatchError",
    "TokenExchangeError",
    "TokenRequest",
    "TokenResponse",
    "UnsupportedAuthenticationMethodError",
    "create_http_client",
    "create_login_repository",
]
