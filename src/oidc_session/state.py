"""
Session state for a single user.

AuthState is an immutable value. The ``after_*`` methods return the state that
results from an authorization, token or registration event; AuthStateManager
is the only place that swaps the current value.

单个用户的会话状态（不可变值）。
"""

import time
from typing import Any

from pydantic import BaseModel, ConfigDict, field_serializer, field_validator

from oidc_session.client_auth import ClientAuthentication, client_authentication_for
from oidc_session.exceptions import AuthorizationException, AuthorizationExceptionType
from oidc_session.models import (
    GRANT_TYPE_REFRESH_TOKEN,
    AuthorizationResponse,
    ClientRegistration,
    ProviderConfiguration,
    TokenRequest,
    TokenResponse,
)

# 过期前 60 秒即视为需要刷新
EXPIRY_TIME_TOLERANCE_SECONDS = 60.0


class AuthState(BaseModel):
    """当前的授权状态：提供方配置、令牌以及最近一次授权错误。"""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    provider_config: ProviderConfiguration | None = None
    refresh_token: str | None = None
    scope: str | None = None
    last_authorization_response: AuthorizationResponse | None = None
    last_token_response: TokenResponse | None = None
    last_registration_response: ClientRegistration | None = None
    authorization_exception: AuthorizationException | None = None

    @field_validator("authorization_exception", mode="before")
    @classmethod
    def _load_exception(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return AuthorizationException.from_dict(value)
        return value

    @field_serializer("authorization_exception")
    def _dump_exception(self, value: AuthorizationException | None) -> dict[str, Any] | None:
        return value.to_dict() if value is not None else None

    @property
    def access_token(self) -> str | None:
        if self.authorization_exception is not None or self.last_token_response is None:
            return None
        return self.last_token_response.access_token

    @property
    def access_token_expiration_time(self) -> float | None:
        if self.authorization_exception is not None or self.last_token_response is None:
            return None
        return self.last_token_response.access_token_expiration_time

    @property
    def id_token(self) -> str | None:
        if self.authorization_exception is not None or self.last_token_response is None:
            return None
        return self.last_token_response.id_token

    @property
    def is_authorized(self) -> bool:
        return self.authorization_exception is None and (
            self.access_token is not None or self.id_token is not None
        )

    @property
    def needs_token_refresh(self) -> bool:
        return self.needs_token_refresh_at(time.time())

    def needs_token_refresh_at(self, now: float) -> bool:
        """在给定时间点访问令牌是否需要刷新。"""
        expiration = self.access_token_expiration_time
        if expiration is None:
            # 不知道过期时间时，只有在没有访问令牌的情况下才需要刷新
            return self.access_token is None
        return expiration <= now + EXPIRY_TIME_TOLERANCE_SECONDS

    @property
    def client_id(self) -> str | None:
        if self.last_authorization_response is not None:
            return self.last_authorization_response.request.client_id
        if self.last_registration_response is not None:
            return self.last_registration_response.client_id
        return None

    @property
    def client_authentication(self) -> ClientAuthentication:
        """令牌请求使用的客户端认证方式；不支持时抛出 UnsupportedAuthenticationMethodError。"""
        return client_authentication_for(self.last_registration_response)

    def create_token_refresh_request(self, client_id: str | None = None) -> TokenRequest:
        """用当前的 refresh token 构造刷新请求。"""
        if self.provider_config is None:
            raise ValueError("no provider configuration to refresh against")
        if self.refresh_token is None:
            raise ValueError("no refresh token available")
        resolved_client_id = self.client_id or client_id
        if resolved_client_id is None:
            raise ValueError("no client id available for refresh")
        return TokenRequest(
            configuration=self.provider_config,
            client_id=resolved_client_id,
            grant_type=GRANT_TYPE_REFRESH_TOKEN,
            refresh_token=self.refresh_token,
        )

    def after_authorization(
        self,
        response: AuthorizationResponse | None,
        ex: AuthorizationException | None,
    ) -> "AuthState":
        """授权结果到达后的状态。只记录授权类的错误。"""
        if response is None and ex is None:
            raise ValueError("exactly one of response or ex must be given")
        if ex is not None:
            if ex.type == AuthorizationExceptionType.AUTHORIZATION:
                return self.model_copy(update={"authorization_exception": ex})
            return self

        # 新的授权会使旧的令牌作废
        return self.model_copy(
            update={
                "last_authorization_response": response,
                "last_token_response": None,
                "refresh_token": None,
                "authorization_exception": None,
                "scope": response.scope if response.scope is not None else response.request.scope,
            }
        )

    def after_token_response(
        self,
        response: TokenResponse | None,
        ex: AuthorizationException | None,
    ) -> "AuthState":
        """令牌响应到达后的状态。只记录令牌类的错误。"""
        if response is None and ex is None:
            raise ValueError("exactly one of response or ex must be given")
        if ex is not None:
            if ex.type == AuthorizationExceptionType.TOKEN:
                return self.model_copy(update={"authorization_exception": ex})
            return self

        # 刷新响应可以不带 id_token，沿用上一次的以便登出时作为 id_token_hint
        previous = self.last_token_response
        if response.id_token is None and previous is not None and previous.id_token is not None:
            response = response.model_copy(update={"id_token": previous.id_token})

        update: dict[str, Any] = {"last_token_response": response, "authorization_exception": None}
        if response.refresh_token is not None:
            update["refresh_token"] = response.refresh_token
        if response.scope is not None:
            update["scope"] = response.scope
        return self.model_copy(update=update)

    def after_registration(
        self,
        response: ClientRegistration | None,
        ex: AuthorizationException | None,
    ) -> "AuthState":
        """动态注册结果到达后的状态。注册会让之前的授权失效。"""
        if response is None and ex is None:
            raise ValueError("exactly one of response or ex must be given")
        if ex is not None:
            if ex.type == AuthorizationExceptionType.REGISTRATION:
                return self.model_copy(update={"authorization_exception": ex})
            return self

        return AuthState(provider_config=self.provider_config, last_registration_response=response)
