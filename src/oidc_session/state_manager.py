"""
Single-writer owner of the persisted session state.

Every write (replace or update after an event) runs under one lock and is
persisted before it becomes ``current``, so completions of concurrent network
calls never interleave their writes.

会话状态的唯一写入者。
"""

import logging

import anyio

from oidc_session.exceptions import AuthorizationException
from oidc_session.models import AuthorizationResponse, ClientRegistration, TokenResponse
from oidc_session.state import AuthState
from oidc_session.storage import AuthStateStorage, InMemoryAuthStateStorage

logger = logging.getLogger(__name__)


class AuthStateManager:
    """管理当前会话状态，所有修改都经过同一把锁。"""

    def __init__(self, storage: AuthStateStorage | None = None):
        self._storage: AuthStateStorage = storage if storage is not None else InMemoryAuthStateStorage()
        self._current = AuthState()
        self._loaded = False
        self._lock = anyio.Lock()

    @property
    def current(self) -> AuthState:
        return self._current

    async def load(self) -> AuthState:
        """首次调用时从存储中读取状态；之后直接返回当前值。"""
        async with self._lock:
            return await self._load_locked()

    async def replace(self, state: AuthState) -> AuthState:
        async with self._lock:
            return await self._write(state)

    async def update_after_authorization(
        self,
        response: AuthorizationResponse | None,
        ex: AuthorizationException | None,
    ) -> AuthState:
        async with self._lock:
            await self._load_locked()
            return await self._write(self._current.after_authorization(response, ex))

    async def update_after_token_response(
        self,
        response: TokenResponse | None,
        ex: AuthorizationException | None,
    ) -> AuthState:
        async with self._lock:
            await self._load_locked()
            return await self._write(self._current.after_token_response(response, ex))

    async def update_after_registration(
        self,
        response: ClientRegistration | None,
        ex: AuthorizationException | None,
    ) -> AuthState:
        async with self._lock:
            await self._load_locked()
            return await self._write(self._current.after_registration(response, ex))

    async def _load_locked(self) -> AuthState:
        if not self._loaded:
            stored = await self._storage.get_state()
            if stored is not None:
                self._current = stored
            self._loaded = True
        return self._current

    async def _write(self, state: AuthState) -> AuthState:
        await self._storage.set_state(state)
        self._current = state
        # 写入后的值即为最新状态，不需要再从存储读取
        self._loaded = True
        return state
