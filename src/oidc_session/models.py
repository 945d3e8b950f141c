"""
Data models exchanged with the identity provider.

Covers the static configuration source, the provider configuration (static
or discovered), authorization requests and responses with PKCE, token
requests and responses, and dynamic client registration.

与身份提供方交互的数据模型。
"""

import base64
import hashlib
import secrets
import time
from typing import Any, Literal
from urllib.parse import parse_qsl, urlencode, urlparse

from pydantic import BaseModel, ConfigDict, Field, model_validator

from oidc_session.exceptions import (
    AuthorizationRequestError,
    StateMismatchError,
    authorization_exception_from_oauth_error,
)

# 响应类型与授权类型常量
RESPONSE_TYPE_CODE = "code"
GRANT_TYPE_AUTHORIZATION_CODE = "authorization_code"
GRANT_TYPE_REFRESH_TOKEN = "refresh_token"


def _require_web_uri(name: str, value: str | None, https_required: bool) -> None:
    if value is None:
        return
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValueError(f"{name} must be an http(s) URI: {value!r}")
    if https_required and parsed.scheme != "https":
        raise ValueError(f"{name} must use https when https_required is set: {value!r}")


# 静态配置源（同时作为持久化的配置快照，用于检测配置变化）
class AuthConfigData(BaseModel):
    """客户端的静态认证配置。按值比较以检测配置变化。"""

    model_config = ConfigDict(frozen=True, extra="ignore")

    client_id: str | None = None
    redirect_uri: str
    end_session_redirect_uri: str | None = None
    authorization_scope: str = "openid"
    discovery_uri: str | None = None
    authorization_endpoint_uri: str | None = None
    token_endpoint_uri: str | None = None
    registration_endpoint_uri: str | None = None
    end_session_endpoint: str | None = None
    user_info_endpoint_uri: str | None = None
    https_required: bool = True

    @model_validator(mode="after")
    def _check_endpoints(self) -> "AuthConfigData":
        # 必须提供发现地址，或者同时提供授权端点与令牌端点
        if self.discovery_uri is None and (
            self.authorization_endpoint_uri is None or self.token_endpoint_uri is None
        ):
            raise ValueError(
                "either discovery_uri or both authorization_endpoint_uri and token_endpoint_uri must be set"
            )
        # redirect_uri 允许自定义 scheme，因此只校验非空
        if not self.redirect_uri:
            raise ValueError("redirect_uri must not be empty")
        for name in (
            "discovery_uri",
            "authorization_endpoint_uri",
            "token_endpoint_uri",
            "registration_endpoint_uri",
            "end_session_endpoint",
            "user_info_endpoint_uri",
        ):
            _require_web_uri(name, getattr(self, name), self.https_required)
        return self


class ProviderConfiguration(BaseModel):
    """授权服务器配置：端点地址，以及可选的原始发现文档。"""

    model_config = ConfigDict(frozen=True)

    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str | None = None
    end_session_endpoint: str | None = None
    issuer: str | None = None
    userinfo_endpoint: str | None = None
    discovery_doc: dict[str, Any] | None = None

    @classmethod
    def from_discovery_document(cls, document: dict[str, Any]) -> "ProviderConfiguration":
        """根据 OIDC 发现文档构建配置。缺少必需字段时抛出 ValueError。"""
        missing = [key for key in ("issuer", "authorization_endpoint", "token_endpoint") if not document.get(key)]
        if missing:
            raise ValueError(f"discovery document is missing {', '.join(missing)}")
        return cls(
            authorization_endpoint=document["authorization_endpoint"],
            token_endpoint=document["token_endpoint"],
            registration_endpoint=document.get("registration_endpoint"),
            end_session_endpoint=document.get("end_session_endpoint"),
            issuer=document["issuer"],
            userinfo_endpoint=document.get("userinfo_endpoint"),
            discovery_doc=document,
        )


def s256_code_challenge(code_verifier: str) -> str:
    """S256 变换：SHA-256 摘要的 base64url 编码，不带填充。"""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


# 一次登录尝试对应的授权请求；同一时间只有最新构建的请求可以被兑换
class AuthorizationRequest(BaseModel):
    """授权码流程的授权请求。"""

    model_config = ConfigDict(frozen=True)

    configuration: ProviderConfiguration
    client_id: str
    response_type: str = RESPONSE_TYPE_CODE
    redirect_uri: str
    scope: str | None = None
    state: str
    nonce: str
    code_verifier: str
    code_challenge: str
    code_challenge_method: Literal["S256"] = "S256"

    @classmethod
    def build(
        cls,
        configuration: ProviderConfiguration,
        client_id: str,
        redirect_uri: str,
        scope: str | None = None,
    ) -> "AuthorizationRequest":
        """生成带随机 state、nonce 与 PKCE 参数的新请求。"""
        # 64 字节随机数编码后为 86 个字符，落在 RFC 7636 要求的 43-128 之间
        code_verifier = secrets.token_urlsafe(64)
        return cls(
            configuration=configuration,
            client_id=client_id,
            redirect_uri=redirect_uri,
            scope=scope,
            state=secrets.token_urlsafe(32),
            nonce=secrets.token_urlsafe(32),
            code_verifier=code_verifier,
            code_challenge=s256_code_challenge(code_verifier),
        )

    def to_uri(self) -> str:
        """构造在浏览器中打开的授权 URL。"""
        params = {
            "response_type": self.response_type,
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "state": self.state,
            "nonce": self.nonce,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
        }
        if self.scope:
            params["scope"] = self.scope
        separator = "&" if "?" in self.configuration.authorization_endpoint else "?"
        return f"{self.configuration.authorization_endpoint}{separator}{urlencode(params)}"


class TokenRequest(BaseModel):
    """发往令牌端点的请求（授权码交换或刷新令牌）。"""

    model_config = ConfigDict(frozen=True)

    configuration: ProviderConfiguration
    client_id: str
    grant_type: str
    redirect_uri: str | None = None
    authorization_code: str | None = None
    refresh_token: str | None = None
    code_verifier: str | None = None
    scope: str | None = None
    additional_parameters: dict[str, str] = Field(default_factory=dict)

    def request_parameters(self) -> dict[str, str]:
        """表单参数；客户端认证相关的参数由 ClientAuthentication 另行添加。"""
        params = {"grant_type": self.grant_type}
        optional = {
            "redirect_uri": self.redirect_uri,
            "code": self.authorization_code,
            "refresh_token": self.refresh_token,
            "code_verifier": self.code_verifier,
            "scope": self.scope,
        }
        params.update({key: value for key, value in optional.items() if value is not None})
        params.update(self.additional_parameters)
        return params


class AuthorizationResponse(BaseModel):
    """授权端点重定向回来的成功结果。"""

    model_config = ConfigDict(frozen=True)

    request: AuthorizationRequest
    state: str
    authorization_code: str
    scope: str | None = None

    @classmethod
    def from_redirect_uri(cls, uri: str, request: AuthorizationRequest) -> "AuthorizationResponse":
        """
        解析重定向 URI。

        授权端点返回 error 参数、state 不一致或缺少授权码时抛出 AuthorizationException。
        """
        params = dict(parse_qsl(urlparse(uri).query))
        if "error" in params:
            raise authorization_exception_from_oauth_error(
                params["error"], params.get("error_description"), params.get("error_uri")
            )

        returned_state = params.get("state")
        if returned_state is None or not secrets.compare_digest(returned_state, request.state):
            raise StateMismatchError(error_description="Redirect state does not match the pending request")

        code = params.get("code")
        if not code:
            raise AuthorizationRequestError(error_description="No authorization code in redirect")

        return cls(request=request, state=returned_state, authorization_code=code, scope=params.get("scope"))

    def create_token_exchange_request(self) -> TokenRequest:
        """构造用授权码换取令牌的请求。"""
        return TokenRequest(
            configuration=self.request.configuration,
            client_id=self.request.client_id,
            grant_type=GRANT_TYPE_AUTHORIZATION_CODE,
            redirect_uri=self.request.redirect_uri,
            authorization_code=self.authorization_code,
            code_verifier=self.request.code_verifier,
        )


class TokenResponse(BaseModel):
    """令牌端点的响应。"""

    access_token: str | None = None
    token_type: str | None = None
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None
    # 接收时根据 expires_in 计算的绝对过期时间（Unix 时间戳）
    access_token_expiration_time: float | None = None

    @model_validator(mode="after")
    def _compute_expiration(self) -> "TokenResponse":
        if self.access_token_expiration_time is None and self.expires_in is not None:
            self.access_token_expiration_time = time.time() + self.expires_in
        return self


class ClientMetadata(BaseModel):
    """动态客户端注册（RFC 7591）提交的元数据。"""

    redirect_uris: list[str]
    response_types: list[str] = Field(default_factory=lambda: [RESPONSE_TYPE_CODE])
    grant_types: list[str] = Field(
        default_factory=lambda: [GRANT_TYPE_AUTHORIZATION_CODE, GRANT_TYPE_REFRESH_TOKEN]
    )
    token_endpoint_auth_method: str = "client_secret_basic"
    scope: str | None = None


class ClientRegistration(BaseModel):
    """动态客户端注册的结果。"""

    model_config = ConfigDict(extra="ignore")

    client_id: str
    client_secret: str | None = None
    client_secret_expires_at: int | None = None
    token_endpoint_auth_method: str | None = None
