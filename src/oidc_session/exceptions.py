"""
Error types for the OIDC session flow.

None of these cross the LoginRepository boundary as raised errors; they are
recorded on the session state or the configuration store instead.

OIDC 会话流程的错误类型定义。
"""

from enum import Enum
from typing import Any


class AuthorizationExceptionType(str, Enum):
    """异常类别，决定会话状态是否记录该异常。"""

    GENERAL = "general"
    AUTHORIZATION = "authorization"
    TOKEN = "token"
    REGISTRATION = "registration"


# 所有授权流程错误的基类
class AuthorizationException(Exception):
    """OAuth / OIDC 流程错误的基类异常。"""

    type: AuthorizationExceptionType = AuthorizationExceptionType.GENERAL
    default_error: str | None = None

    def __init__(
        self,
        error: str | None = None,
        error_description: str | None = None,
        error_uri: str | None = None,
    ):
        self.error = error if error is not None else self.default_error
        self.error_description = error_description
        self.error_uri = error_uri
        super().__init__(error_description or self.error or type(self).__name__)

    def to_dict(self) -> dict[str, Any]:
        """序列化为可持久化的字典。"""
        return {
            "kind": type(self).__name__,
            "error": self.error,
            "error_description": self.error_description,
            "error_uri": self.error_uri,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuthorizationException":
        """从字典恢复异常；未知的 kind 回退为基类。"""
        exc_cls = _EXCEPTION_KINDS.get(data.get("kind", ""), AuthorizationException)
        return exc_cls(
            error=data.get("error"),
            error_description=data.get("error_description"),
            error_uri=data.get("error_uri"),
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AuthorizationException):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.error, self.error_description))


# 获取发现文档失败（网络错误、解析失败或 https 校验不通过）
class DiscoveryError(AuthorizationException):
    """获取或解析发现文档失败。"""

    default_error = "discovery_failed"


# 令牌或注册请求的传输层错误
class NetworkError(AuthorizationException):
    """与身份提供方通信时的网络错误。"""

    default_error = "network_error"


class AuthorizationDeniedError(AuthorizationException):
    """用户或授权服务器拒绝了授权请求。"""

    type = AuthorizationExceptionType.AUTHORIZATION
    default_error = "access_denied"


class AuthorizationRequestError(AuthorizationException):
    """授权端点以 error 参数返回的其他错误（如 invalid_scope）。"""

    type = AuthorizationExceptionType.AUTHORIZATION
    default_error = "invalid_request"


class AuthorizationCancelledError(AuthorizationException):
    """用户取消了浏览器中的授权流程。"""

    type = AuthorizationExceptionType.AUTHORIZATION
    default_error = "user_canceled"


# 重定向携带的 state 与当前挂起的请求不一致（例如旧的请求被新的请求覆盖）
# 不写入会话状态，伪造或重放的重定向不能使已有会话失效
class StateMismatchError(AuthorizationException):
    """重定向结果不属于当前挂起的授权请求。"""

    type = AuthorizationExceptionType.GENERAL
    default_error = "state_mismatch"


class TokenExchangeError(AuthorizationException):
    """令牌端点拒绝了授权码或刷新令牌交换。"""

    type = AuthorizationExceptionType.TOKEN
    default_error = "invalid_grant"


class RegistrationError(AuthorizationException):
    """动态客户端注册失败。"""

    type = AuthorizationExceptionType.REGISTRATION
    default_error = "invalid_client_metadata"


class UnsupportedAuthenticationMethodError(AuthorizationException):
    """令牌端点的客户端认证方式不受支持，请求不会被发送。"""

    default_error = "unsupported_authentication_method"

    def __init__(self, method: str | None = None, **kwargs: Any):
        self.method = method
        kwargs.setdefault("error_description", f"Unsupported client authentication method: {method}")
        super().__init__(**kwargs)


class InvalidConfigurationError(ValueError):
    """静态配置无效（缺少必需字段或 URI 格式错误）。"""


_EXCEPTION_KINDS: dict[str, type[AuthorizationException]] = {
    exc_cls.__name__: exc_cls
    for exc_cls in (
        AuthorizationException,
        DiscoveryError,
        NetworkError,
        AuthorizationDeniedError,
        AuthorizationRequestError,
        AuthorizationCancelledError,
        StateMismatchError,
        TokenExchangeError,
        RegistrationError,
        UnsupportedAuthenticationMethodError,
    )
}


def authorization_exception_from_oauth_error(
    error: str,
    error_description: str | None = None,
    error_uri: str | None = None,
) -> AuthorizationException:
    """把授权端点返回的 error 参数映射为异常。"""
    if error == AuthorizationDeniedError.default_error:
        return AuthorizationDeniedError(error, error_description, error_uri)
    return AuthorizationRequestError(error, error_description, error_uri)
