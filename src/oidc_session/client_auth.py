"""Client authentication methods for the token endpoint."""

import base64
from urllib.parse import quote

from oidc_session.exceptions import UnsupportedAuthenticationMethodError
from oidc_session.models import ClientRegistration


class ClientAuthentication:
    """令牌请求的客户端认证方式基类。"""

    def request_headers(self, client_id: str) -> dict[str, str]:
        return {}

    def request_parameters(self, client_id: str) -> dict[str, str]:
        return {}


# 公共客户端：只在表单中携带 client_id
class NoClientAuthentication(ClientAuthentication):
    def request_parameters(self, client_id: str) -> dict[str, str]:
        return {"client_id": client_id}


class ClientSecretBasic(ClientAuthentication):
    """client_secret_basic：通过 HTTP Basic 头发送凭据。"""

    def __init__(self, client_secret: str):
        self.client_secret = client_secret

    def request_headers(self, client_id: str) -> dict[str, str]:
        # RFC 6749 2.3.1：用户名和密码先做 form-urlencode
        credentials = f"{quote(client_id, safe='')}:{quote(self.client_secret, safe='')}"
        encoded = base64.b64encode(credentials.encode()).decode()
        return {"Authorization": f"Basic {encoded}"}


class ClientSecretPost(ClientAuthentication):
    """client_secret_post：在表单中发送 client_id 与 client_secret。"""

    def __init__(self, client_secret: str):
        self.client_secret = client_secret

    def request_parameters(self, client_id: str) -> dict[str, str]:
        return {"client_id": client_id, "client_secret": self.client_secret}


def client_authentication_for(registration: ClientRegistration | None) -> ClientAuthentication:
    """
    根据注册结果选择客户端认证方式。

    没有注册信息或没有 client_secret 时视为公共客户端。方式无法识别时抛出
    UnsupportedAuthenticationMethodError。
    """
    if registration is None or registration.client_secret is None:
        return NoClientAuthentication()

    method = registration.token_endpoint_auth_method
    if method is None or method == "client_secret_basic":
        return ClientSecretBasic(registration.client_secret)
    if method == "client_secret_post":
        return ClientSecretPost(registration.client_secret)
    if method == "none":
        return NoClientAuthentication()
    raise UnsupportedAuthenticationMethodError(method)
