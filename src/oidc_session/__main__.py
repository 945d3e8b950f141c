import argparse
import logging
import sys
from functools import partial

import anyio
import anyio.to_thread

from oidc_session.callback_server import CallbackServer
from oidc_session.config import AuthConfiguration
from oidc_session.exceptions import AuthorizationCancelledError, InvalidConfigurationError
from oidc_session.repository import LoginRepository, create_login_repository
from oidc_session.state_manager import AuthStateManager
from oidc_session.storage import FileAuthStateStorage, FileConfigSnapshotStorage

logger = logging.getLogger("oidc_session")

DEFAULT_STATE_FILE = ".oidc-session/state.json"
DEFAULT_SNAPSHOT_FILE = ".oidc-session/config-snapshot.json"


async def build_repository(args: argparse.Namespace) -> LoginRepository:
    auth_config = await AuthConfiguration.load(
        args.config,
        snapshot_storage=FileConfigSnapshotStorage(args.snapshot_file),
    )
    repository = create_login_repository(auth_config, AuthStateManager(FileAuthStateStorage(args.state_file)))
    # 任何依赖会话状态的操作之前都要先检查配置是否变化
    await repository.reconcile_configuration()
    await repository.bootstrap()
    return repository


async def login(repository: LoginRepository, args: argparse.Namespace) -> int:
    if not await repository.is_session_established():
        logger.error("Session could not be established: %s", repository.last_configuration_error())
        return 1

    descriptor = repository.build_authorization_launch_descriptor()
    if descriptor is None:
        logger.error("Unable to build an authorization request")
        return 1

    callback_server = CallbackServer(repository.pending_request.redirect_uri)
    callback_server.start()
    try:
        print(f"正在打开浏览器进行授权: {descriptor.url}")
        if not descriptor.launch():
            print("无法自动打开浏览器，请手动访问上面的地址。")
        try:
            redirect_uri = await anyio.to_thread.run_sync(partial(callback_server.wait_for_callback, args.timeout))
        except TimeoutError:
            await repository.on_authorization_result(None, AuthorizationCancelledError())
            logger.error("No authorization redirect received within %s seconds", args.timeout)
            return 1
    finally:
        callback_server.stop()

    await repository.handle_redirect(redirect_uri)
    state = repository.auth_state
    if not state.is_authorized:
        logger.error("Login failed: %s", state.authorization_exception)
        return 1
    print("✅ 登录成功")
    return 0


async def token(repository: LoginRepository, args: argparse.Namespace) -> int:
    access_token = await repository.get_bearer_token()
    if repository.login_required or not access_token:
        logger.error("Login required, run the login command first")
        return 1
    print(access_token)
    return 0


async def status(repository: LoginRepository, args: argparse.Namespace) -> int:
    state = repository.auth_state
    print(f"session established: {await repository.is_session_established()}")
    print(f"client id: {repository.client_id}")
    print(f"authorized: {state.is_authorized}")
    print(f"needs token refresh: {state.needs_token_refresh}")
    if state.authorization_exception is not None:
        print(f"last error: {state.authorization_exception}")
    error = repository.last_configuration_error()
    if error is not None:
        print(f"configuration error: {error}")
    return 0


async def logout(repository: LoginRepository, args: argparse.Namespace) -> int:
    descriptor = repository.build_end_session_launch_descriptor()
    await repository.sign_out()
    if descriptor is not None and args.end_session:
        descriptor.launch()
    print("已退出登录")
    return 0


COMMANDS = {"login": login, "token": token, "status": status, "logout": logout}


async def main(args: argparse.Namespace) -> int:
    try:
        repository = await build_repository(args)
    except (OSError, InvalidConfigurationError) as e:
        logger.error("Cannot load configuration: %s", e)
        return 2
    return await COMMANDS[args.command](repository, args)


def cli():
    parser = argparse.ArgumentParser(prog="oidc-session", description="OIDC 授权码登录与令牌管理")
    parser.add_argument("--config", default="auth_config.json", help="静态认证配置文件（JSON）")
    parser.add_argument("--state-file", default=DEFAULT_STATE_FILE, help="会话状态保存位置")
    parser.add_argument("--snapshot-file", default=DEFAULT_SNAPSHOT_FILE, help="配置快照保存位置")
    parser.add_argument("-v", "--verbose", action="store_true", help="输出调试日志")

    subparsers = parser.add_subparsers(dest="command", required=True)
    login_parser = subparsers.add_parser("login", help="在浏览器中登录")
    login_parser.add_argument("--timeout", type=float, default=300.0, help="等待重定向的秒数")
    subparsers.add_parser("token", help="输出 Bearer 令牌（必要时自动刷新）")
    subparsers.add_parser("status", help="显示会话状态")
    logout_parser = subparsers.add_parser("logout", help="退出登录")
    logout_parser.add_argument("--end-session", action="store_true", help="同时在浏览器中结束提供方会话")

    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    sys.exit(anyio.run(main, args))


if __name__ == "__main__":
    cli()
