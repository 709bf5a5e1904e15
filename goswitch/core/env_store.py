"""
系统环境变量存储模块。

定义环境变量存储的异常类型、WM_SETTINGCHANGE 广播，以及根据运行平台
选择具体存储实现的工厂函数。
"""

import ctypes
import sys

from goswitch.utils.logger import get_logger
from goswitch.core.interfaces import IEnvironmentStore

logger = get_logger()

ENV_KEY_PATH = r"SYSTEM\CurrentControlSet\Control\Session Manager\Environment"
WM_SETTINGCHANGE = 0x001A
HWND_BROADCAST = 0xFFFF
SMTO_ABORTIFHUNG = 0x0002
BROADCAST_TIMEOUT_MS = 5000


class EnvStoreError(Exception):
    """环境变量存储错误异常。"""
    pass


class PermissionDeniedError(EnvStoreError):
    """无权写入系统环境变量异常。"""
    pass


def broadcast_environment_change() -> bool:
    """
    广播 WM_SETTINGCHANGE 消息，通知已运行的程序重新读取环境变量。

    广播失败不影响已写入的值，只记录警告。

    返回:
        广播成功返回 True
    """
    if sys.platform != "win32":
        logger.debug("非 Windows 平台，跳过环境变量更改广播")
        return False
    try:
        result = ctypes.c_long()
        ctypes.windll.user32.SendMessageTimeoutW(
            HWND_BROADCAST,
            WM_SETTINGCHANGE,
            0,
            "Environment",
            SMTO_ABORTIFHUNG,
            BROADCAST_TIMEOUT_MS,
            ctypes.byref(result)
        )
        logger.debug("已广播 WM_SETTINGCHANGE 消息")
        return True
    except (AttributeError, OSError) as e:
        logger.warning(f"广播环境变量更改消息失败: {e}")
        return False


def create_env_store() -> IEnvironmentStore:
    """
    创建当前平台可用的环境变量存储。

    Windows 上优先使用 winreg 直接访问注册表；winreg 无法导入或注册表键
    无法打开时退回到调用 reg.exe 的实现。

    返回:
        IEnvironmentStore 实例
    """
    if sys.platform == "win32":
        try:
            from goswitch.core.env_manager import RegistryEnvStore
            store = RegistryEnvStore()
            store.ensure_readable()
            logger.debug("使用 winreg 环境变量存储")
            return store
        except (ImportError, OSError, EnvStoreError) as e:
            logger.warning(f"winreg 不可用，改用 reg.exe: {e}")

    from goswitch.core.reg_command_store import RegCommandEnvStore
    logger.debug("使用 reg.exe 环境变量存储")
    return RegCommandEnvStore()
