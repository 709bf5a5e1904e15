"""
GoSwitch 命令行接口模块。
"""

import argparse
import json
import logging
import threading
from typing import Optional

from goswitch import __version__
from goswitch.core.backup_store import BackupStoreError
from goswitch.core.catalog import CatalogError
from goswitch.core.config_manager import ConfigLoadError, ConfigManager, ConfigSaveError, ConfigValidationError
from goswitch.core.env_mutator import EnvMutatorError, MutationPartialFailureError
from goswitch.core.env_store import EnvStoreError
from goswitch.core.install_pipeline import InstallPipelineError
from goswitch.core.models import ActivationPolicy, InstalledVersion
from goswitch.core.version_manager import VersionManager, VersionManagerError
from goswitch.core.version_registry import VersionRegistryError
from goswitch.utils.input_validator import InputValidationError
from goswitch.utils.logger import get_logger, setup_logger
from goswitch.utils.permission_manager import is_admin

logger = get_logger()

# 命令处理过程中会被转换为退出码 1 的错误
HANDLED_ERRORS = (
    CatalogError,
    InstallPipelineError,
    VersionRegistryError,
    EnvStoreError,
    EnvMutatorError,
    BackupStoreError,
    VersionManagerError,
    ConfigLoadError,
    ConfigSaveError,
    ConfigValidationError,
    InputValidationError,
)

MUTATING_COMMANDS = ("install", "use", "rollback")


def create_parser() -> argparse.ArgumentParser:
    """
    创建并配置命令行参数解析器。

    返回:
        配置好的 ArgumentParser 实例
    """
    parser = argparse.ArgumentParser(
        prog="gvs",
        description="GoSwitch - Windows 下的 Go 版本切换工具",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例:
  gvs list                  列出已安装的 Go 版本
  gvs list --remote         列出可安装的 Go 版本
  gvs install 1.21.0        安装 Go 1.21.0
  gvs use 1.20.7 --arch x86 切换到 32 位的 Go 1.20.7
  gvs rollback              恢复到上一次修改前的环境变量
  gvs config --set download_timeout=600
        """,
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="启用详细输出",
    )

    parser.add_argument(
        "--base-dir",
        "-d",
        type=str,
        default=None,
        help="数据目录（默认读取 GOSWITCH_HOME，否则为程序目录下的 data）",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="命令",
        description="可用的 CLI 命令",
    )

    list_parser = subparsers.add_parser(
        "list",
        help="列出已安装或可安装的版本",
    )
    list_parser.add_argument(
        "--remote",
        "-r",
        action="store_true",
        help="显示远程可用版本",
    )
    list_parser.add_argument(
        "--update",
        "-u",
        action="store_true",
        help="忽略缓存有效期，强制刷新远程版本列表",
    )
    list_parser.add_argument(
        "--format",
        "-f",
        choices=["table", "json", "simple"],
        default="simple",
        help="输出格式",
    )

    install_parser = subparsers.add_parser(
        "install",
        help="下载并安装指定版本",
    )
    install_parser.add_argument(
        "version",
        help="要安装的版本，例如 1.21.0",
    )
    install_parser.add_argument(
        "--arch",
        "-a",
        default=None,
        help="架构 (x86, x64, arm, arm64)，默认为本机架构",
    )
    install_parser.add_argument(
        "--activate",
        choices=[p.value for p in ActivationPolicy],
        default=None,
        help="安装后是否切换为当前版本（默认读取配置 activation_policy）",
    )
    install_parser.add_argument(
        "--no-verify",
        action="store_true",
        help="切换后不运行 go version 自检",
    )

    use_parser = subparsers.add_parser(
        "use",
        help="切换到已安装的版本",
    )
    use_parser.add_argument(
        "version",
        help="要切换到的版本",
    )
    use_parser.add_argument(
        "--arch",
        "-a",
        default=None,
        help="架构 (x86, x64, arm, arm64)，默认为本机架构",
    )
    use_parser.add_argument(
        "--no-verify",
        action="store_true",
        help="切换后不运行 go version 自检",
    )

    uninstall_parser = subparsers.add_parser(
        "uninstall",
        help="卸载指定版本",
    )
    uninstall_parser.add_argument(
        "version",
        help="要卸载的版本",
    )
    uninstall_parser.add_argument(
        "--arch",
        "-a",
        default=None,
        help="架构 (x86, x64, arm, arm64)，默认为本机架构",
    )

    subparsers.add_parser(
        "rollback",
        help="恢复到最新一次备份的环境变量",
    )

    backups_parser = subparsers.add_parser(
        "backups",
        help="列出环境变量备份",
    )
    backups_parser.add_argument(
        "--format",
        "-f",
        choices=["table", "json", "simple"],
        default="simple",
        help="输出格式",
    )

    config_parser = subparsers.add_parser(
        "config",
        help="显示或修改配置",
    )
    config_parser.add_argument(
        "--set",
        "-s",
        type=str,
        help="设置配置值（格式：key=value）",
    )

    return parser


def run_cli(args: argparse.Namespace) -> int:
    """
    运行命令行接口。

    参数:
        args: 解析后的命令行参数

    返回:
        退出码（0 表示成功，1 表示失败）
    """
    if args.command is None:
        print("未指定命令。使用 --help 查看帮助信息。")
        return 1

    try:
        config_manager = ConfigManager(args.base_dir)
    except OSError as e:
        print(f"无法创建数据目录: {e}")
        return 1

    setup_logger(
        level=logging.DEBUG if args.verbose else logging.INFO,
        log_to_file=True,
        log_to_console=args.verbose,
        log_dir=config_manager.log_dir,
    )
    logger.debug(f"数据目录: {config_manager.base_dir}")

    if args.command in MUTATING_COMMANDS and not is_admin():
        print("警告：当前未以管理员权限运行。")
        print("修改系统环境变量需要管理员权限，建议以管理员身份运行。")

    command_handlers = {
        "list": handle_list,
        "install": handle_install,
        "use": handle_use,
        "uninstall": handle_uninstall,
        "rollback": handle_rollback,
        "backups": handle_backups,
        "config": handle_config,
    }

    handler = command_handlers.get(args.command)
    if handler is None:
        print(f"未知命令: {args.command}")
        return 1

    try:
        return handler(args, config_manager)
    except HANDLED_ERRORS as e:
        logger.error(f"命令 {args.command} 失败: {e}")
        print(f"错误: {e}")
        if isinstance(e, MutationPartialFailureError) and e.compensation_errors:
            print("部分环境变量未能恢复，请运行 gvs rollback 或手动检查系统环境变量。")
        return 1
    except KeyboardInterrupt:
        logger.warning(f"命令 {args.command} 被用户中断")
        print("\n操作已取消")
        return 1


def _get_version_manager(config_manager: ConfigManager) -> VersionManager:
    return VersionManager(config_manager)


def _format_size(size: int) -> str:
    if size <= 0:
        return "-"
    return f"{size / (1024 * 1024):.1f} MB"


def handle_list(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 list 命令：列出已安装或远程可用的版本。
    """
    version_manager = _get_version_manager(config_manager)

    if args.remote or args.update:
        print("正在获取 Go 的远程版本...")
        releases = version_manager.list_remote(force_update=args.update)
        if not releases:
            print("未找到可用的 Go 版本")
            return 0

        if args.format == "json":
            print(json.dumps([r.to_dict() for r in releases], indent=2))
        elif args.format == "table":
            print(f"{'版本':<12}{'架构':<8}{'大小':<12}SHA-256")
            for r in releases:
                print(f"{r.version:<12}{r.arch:<8}{_format_size(r.size):<12}{r.sha256[:16]}...")
        else:
            print("Go 可用版本:")
            versions = []
            for r in releases:
                if r.version not in versions:
                    versions.append(r.version)
            for version in versions[:30]:
                archs = ", ".join(r.arch for r in releases if r.version == version)
                print(f"  {version} ({archs})")
            if len(versions) > 30:
                print(f"  ... 还有 {len(versions) - 30} 个版本")
        updated = version_manager.catalog_last_updated()
        if updated and args.format != "json":
            print(f"\n版本列表更新于: {updated:%Y-%m-%d %H:%M:%S}")
        return 0

    entries = version_manager.list_installed()
    current = version_manager.get_current()

    if args.format == "json":
        result = {
            "current": current.key if current else None,
            "versions": [
                dict(e["installed"].to_dict(), valid=e["valid"], current=e["current"]) for e in entries
            ],
        }
        print(json.dumps(result, indent=2, ensure_ascii=False))
        return 0

    if not entries:
        print("未找到已安装的 Go 版本")
        print(f"安装目录: {config_manager.versions_dir}")
        return 0

    if args.format == "table":
        print(f"  {'版本':<12}{'架构':<8}{'状态':<8}路径")
    else:
        print("Go 已安装版本:")
    for e in entries:
        installed = e["installed"]
        marker = " *" if e["current"] else "  "
        status = "" if e["valid"] else " (目录不完整)"
        if args.format == "table":
            print(f"{marker}{installed.version:<12}{installed.arch:<8}{'正常' if e['valid'] else '损坏':<8}{installed.path}")
        else:
            print(f"{marker} {installed.version} ({installed.arch}){status}")
            if args.verbose:
                print(f"     路径: {installed.path}")
    print(f"\n当前版本: {f'{current.version} ({current.arch})' if current else '未设置'}")
    return 0


def _print_progress(downloaded: int, total: int) -> None:
    percent = int(downloaded / total * 100) if total > 0 else 0
    bar_len = 40
    filled = int(bar_len * percent / 100)
    bar = "=" * filled + "-" * (bar_len - filled)
    print(f"\r[{bar}] {percent}% ({downloaded}/{total} 字节)", end="", flush=True)


def _confirm_activation(installed: InstalledVersion) -> bool:
    try:
        answer = input(f"\n是否将 Go {installed.version} ({installed.arch}) 设为当前版本? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


def _print_switched(installed: Optional[InstalledVersion]) -> None:
    if installed is not None:
        print(f"已切换到 Go {installed.version} ({installed.arch})")
        print(f"GOROOT: {installed.path}")
    print("注意：已打开的终端和编辑器需要重启才能使更改生效。")


def handle_install(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 install 命令：下载并安装指定版本。
    """
    version_manager = _get_version_manager(config_manager)
    policy = ActivationPolicy(args.activate or config_manager.get_activation_policy())

    print(f"正在安装 Go {args.version}...")
    cancel_event = threading.Event()
    try:
        installed, snapshot = version_manager.install(
            args.version,
            args.arch,
            policy=policy,
            confirm=_confirm_activation,
            progress_callback=_print_progress,
            cancel_event=cancel_event,
            verify=False if args.no_verify else None,
        )
    except KeyboardInterrupt:
        cancel_event.set()
        raise

    print(f"\n成功安装 Go {installed.version} ({installed.arch}) 到 {installed.path}")
    if snapshot is not None:
        print(f"原环境变量已备份到: {snapshot.backup_file}")
        _print_switched(installed)
    return 0


def handle_use(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 use 命令：切换到指定版本。
    """
    version_manager = _get_version_manager(config_manager)

    print(f"正在切换到 Go {args.version}...")
    snapshot = version_manager.use(args.version, args.arch, verify=False if args.no_verify else None)
    print(f"原环境变量已备份到: {snapshot.backup_file}")
    _print_switched(version_manager.get_current())
    return 0


def handle_uninstall(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 uninstall 命令：卸载指定版本。
    """
    version_manager = _get_version_manager(config_manager)

    print(f"正在卸载 Go {args.version}...")
    installed = version_manager.uninstall(args.version, args.arch)
    print(f"成功卸载 Go {installed.version} ({installed.arch})")
    return 0


def handle_rollback(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 rollback 命令：恢复到最新一次备份的环境变量。
    """
    version_manager = _get_version_manager(config_manager)

    snapshot = version_manager.rollback()
    print(f"已从备份 {snapshot.backup_file} 恢复环境变量")
    print(f"GOROOT: {snapshot.install_root}")
    print(f"GOARCH: {snapshot.architecture}")
    _print_switched(None)
    return 0


def handle_backups(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 backups 命令：列出环境变量备份。
    """
    version_manager = _get_version_manager(config_manager)
    snapshots = version_manager.list_backups()

    if args.format == "json":
        print(json.dumps([dict(s.to_dict(), valid=s.is_valid) for s in snapshots], indent=2, ensure_ascii=False))
        return 0

    if not snapshots:
        print("没有环境变量备份")
        return 0

    print("环境变量备份（最新在前）:")
    for s in snapshots:
        status = "" if s.is_valid else " (不完整，回滚时跳过)"
        if args.format == "table":
            print(f"  {s.timestamp}  GOROOT={s.install_root or '-'}  GOARCH={s.architecture or '-'}{status}")
        else:
            print(f"  {s.timestamp}  {s.install_root or '-'}{status}")
    return 0


def handle_config(args: argparse.Namespace, config_manager: ConfigManager) -> int:
    """
    处理 config 命令：显示或修改配置。
    """
    if args.set:
        key, _, value = args.set.partition("=")
        key = key.strip()
        if key.startswith("settings."):
            key = key[len("settings."):]
        if not key or not value:
            print("格式无效。请使用: key=value")
            return 1

        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            pass

        config_manager.set_setting(key, value)
        print(f"已设置 {key} = {value}")
    else:
        print(json.dumps(config_manager.get_config(), indent=2, ensure_ascii=False))

    return 0
