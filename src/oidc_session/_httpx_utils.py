"""Utilities for creating the httpx clients used for provider calls."""

from typing import Any, Protocol
from urllib.parse import urlsplit, urlunsplit

import httpx

__all__ = [
    "HttpClientFactory",
    "LoopbackRewritingClientFactory",
    "create_http_client",
    "replace_localhost",
]

DEFAULT_TIMEOUT = 30.0
LOOPBACK_HOSTS = ("localhost", "127.0.0.1")


class HttpClientFactory(Protocol):
    def __call__(
        self,
        headers: dict[str, str] | None = None,
        timeout: httpx.Timeout | None = None,
        auth: httpx.Auth | None = None,
    ) -> httpx.AsyncClient: ...


def create_http_client(
    headers: dict[str, str] | None = None,
    timeout: httpx.Timeout | None = None,
    auth: httpx.Auth | None = None,
) -> httpx.AsyncClient:
    """创建带默认设置的 httpx.AsyncClient：跟随重定向，默认 30 秒超时。

    调用方负责关闭客户端，通常使用 ``async with``::

        async with create_http_client() as client:
            response = await client.get(discovery_uri)
    """
    kwargs: dict[str, Any] = {"follow_redirects": True}
    kwargs["timeout"] = timeout if timeout is not None else httpx.Timeout(DEFAULT_TIMEOUT)
    if headers is not None:
        kwargs["headers"] = headers
    if auth is not None:
        kwargs["auth"] = auth
    return httpx.AsyncClient(**kwargs)


class LoopbackRewritingClientFactory:
    """
    测试或模拟器环境使用的客户端工厂。

    身份提供方在本机运行、而客户端跑在模拟器或容器中时，发现文档里的
    localhost 需要替换为可达的地址（默认 10.0.2.2）。
    """

    def __init__(
        self,
        replace_localhost_by: str = "10.0.2.2",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.replace_localhost_by = replace_localhost_by
        self._transport = transport

    def __call__(
        self,
        headers: dict[str, str] | None = None,
        timeout: httpx.Timeout | None = None,
        auth: httpx.Auth | None = None,
    ) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            timeout=timeout if timeout is not None else httpx.Timeout(DEFAULT_TIMEOUT),
            headers=headers,
            auth=auth,
            transport=self._transport,
        )


def _replace_host(value: str, replacement: str) -> str:
    parts = urlsplit(value)
    if parts.hostname not in LOOPBACK_HOSTS:
        return value
    netloc = replacement if parts.port is None else f"{replacement}:{parts.port}"
    if parts.username:
        netloc = f"{parts.username}@{netloc}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))


def replace_localhost(document: dict[str, Any], replacement: str) -> dict[str, Any]:
    """把发现文档中所有指向本机的 URL 主机名替换为 replacement。"""

    def rewrite(value: Any) -> Any:
        if isinstance(value, str) and value.startswith(("http://", "https://")):
            return _replace_host(value, replacement)
        if isinstance(value, dict):
            return {key: rewrite(item) for key, item in value.items()}
        if isinstance(value, list):
            return [rewrite(item) for item in value]
        return value

    # rewrite 总是返回新的容器，不会修改调用方的文档
    return rewrite(document)
