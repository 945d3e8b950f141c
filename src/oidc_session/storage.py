"""
Persistence for the session state and the configuration snapshot.

会话状态与配置快照的持久化。
"""

import logging
from typing import Protocol, TypeVar

import anyio
from pydantic import BaseModel, ValidationError

from oidc_session.models import AuthConfigData
from oidc_session.state import AuthState

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class AuthStateStorage(Protocol):
    """会话状态存储的协议（接口）类。"""

    async def get_state(self) -> AuthState | None:
        """获取已保存的会话状态。"""
        ...

    async def set_state(self, state: AuthState) -> None:
        """保存会话状态。"""
        ...


class ConfigSnapshotStorage(Protocol):
    """配置快照存储的协议（接口）类。"""

    async def get_snapshot(self) -> AuthConfigData | None:
        """获取上一次保存的配置快照。"""
        ...

    async def set_snapshot(self, snapshot: AuthConfigData) -> None:
        """保存配置快照。"""
        ...


class InMemoryAuthStateStorage:
    """内存中的会话状态存储，进程退出后丢失。"""

    def __init__(self, state: AuthState | None = None):
        self._state = state

    async def get_state(self) -> AuthState | None:
        return self._state

    async def set_state(self, state: AuthState) -> None:
        self._state = state


class InMemoryConfigSnapshotStorage:
    """内存中的配置快照存储。"""

    def __init__(self, snapshot: AuthConfigData | None = None):
        self._snapshot = snapshot

    async def get_snapshot(self) -> AuthConfigData | None:
        return self._snapshot

    async def set_snapshot(self, snapshot: AuthConfigData) -> None:
        self._snapshot = snapshot


class _JsonModelFile:
    """把单个 pydantic 模型保存为 JSON 文件。"""

    def __init__(self, path: str | anyio.Path):
        self.path = anyio.Path(path)

    async def read(self, model: type[ModelT]) -> ModelT | None:
        if not await self.path.exists():
            return None
        try:
            content = await self.path.read_text(encoding="utf-8")
            return model.model_validate_json(content)
        except (UnicodeDecodeError, ValidationError) as e:
            # 文件损坏时当作未保存处理，下一次写入会覆盖它
            logger.warning("Ignoring unreadable %s at %s: %s", model.__name__, self.path, e)
            return None

    async def write(self, value: BaseModel) -> None:
        await self.path.parent.mkdir(parents=True, exist_ok=True)
        # 先写临时文件再替换，避免中途失败留下半个文件
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        await tmp_path.write_text(value.model_dump_json(indent=2), encoding="utf-8")
        await tmp_path.replace(self.path)


class FileAuthStateStorage:
    """以 JSON 文件保存会话状态，跨进程重启保留。"""

    def __init__(self, path: str | anyio.Path):
        self._file = _JsonModelFile(path)

    async def get_state(self) -> AuthState | None:
        return await self._file.read(AuthState)

    async def set_state(self, state: AuthState) -> None:
        await self._file.write(state)


class FileConfigSnapshotStorage:
    """以 JSON 文件保存配置快照。"""

    def __init__(self, path: str | anyio.Path):
        self._file = _JsonModelFile(path)

    async def get_snapshot(self) -> AuthConfigData | None:
        return await self._file.read(AuthConfigData)

    async def set_snapshot(self, snapshot: AuthConfigData) -> None:
        await self._file.write(snapshot)
