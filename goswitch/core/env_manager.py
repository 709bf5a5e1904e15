"""
注册表环境变量存储模块。

通过 winreg 直接读写 HKLM 下的系统环境变量，仅在 Windows 上可用。
"""

import winreg
from typing import Dict, Optional

from goswitch.utils.logger import get_logger
from goswitch.utils.permission_manager import is_admin
from goswitch.core.interfaces import IEnvironmentStore
from goswitch.core.env_store import (
    ENV_KEY_PATH,
    EnvStoreError,
    PermissionDeniedError,
    broadcast_environment_change,
)

logger = get_logger()

ENV_KEY_ROOT = winreg.HKEY_LOCAL_MACHINE


class RegistryAccessError(EnvStoreError):
    """注册表访问错误异常。"""
    pass


class RegistryEnvStore(IEnvironmentStore):
    """
    基于 winreg 的系统环境变量存储。

    每次操作独立打开、关闭注册表键；单个 SetValueEx / DeleteValue
    调用本身是原子的。
    """

    def _open_key(self, writable: bool = True):
        """
        打开注册表环境变量键。

        参数:
            writable: 是否以可写模式打开

        返回:
            打开的注册表键句柄

        抛出:
            PermissionDeniedError: 无权以写模式打开
            RegistryAccessError: 其他打开失败
        """
        access = winreg.KEY_READ | winreg.KEY_SET_VALUE if writable else winreg.KEY_READ
        try:
            key = winreg.OpenKey(ENV_KEY_ROOT, ENV_KEY_PATH, 0, access)
            logger.debug(f"注册表键已打开 (writable={writable})")
            return key
        except PermissionError as e:
            error_msg = f"没有权限打开系统环境变量注册表键: {e}"
            logger.error(error_msg)
            raise PermissionDeniedError(error_msg) from e
        except OSError as e:
            error_msg = f"打开注册表键失败: {e}"
            logger.error(error_msg)
            raise RegistryAccessError(error_msg) from e

    def ensure_readable(self) -> None:
        """确认环境变量注册表键可以打开。"""
        winreg.CloseKey(self._open_key(writable=False))

    def get_env_var(self, name: str) -> Optional[str]:
        """
        获取环境变量值。

        参数:
            name: 环境变量名称

        返回:
            环境变量值，不存在则返回 None
        """
        key = self._open_key(writable=False)
        try:
            value, _ = winreg.QueryValueEx(key, name)
            logger.debug(f"读取环境变量 {name}={value}")
            return value
        except FileNotFoundError:
            logger.debug(f"环境变量 {name} 不存在")
            return None
        except OSError as e:
            error_msg = f"读取环境变量 {name} 失败: {e}"
            logger.error(error_msg)
            raise RegistryAccessError(error_msg) from e
        finally:
            winreg.CloseKey(key)

    def set_env_var(self, name: str, value: str) -> None:
        """
        设置环境变量值。

        值中含 "%" 时以 REG_EXPAND_SZ 写入，否则为 REG_SZ。

        参数:
            name: 环境变量名称
            value: 环境变量值
        """
        key = self._open_key(writable=True)
        try:
            reg_type = winreg.REG_EXPAND_SZ if "%" in value else winreg.REG_SZ
            winreg.SetValueEx(key, name, 0, reg_type, value)
            logger.info(f"设置环境变量 {name}={value}")
        except PermissionError as e:
            error_msg = f"没有权限写入环境变量 {name}: {e}"
            logger.error(error_msg)
            raise PermissionDeniedError(error_msg) from e
        except OSError as e:
            error_msg = f"设置环境变量 {name} 失败: {e}"
            logger.error(error_msg)
            raise RegistryAccessError(error_msg) from e
        finally:
            winreg.CloseKey(key)

    def delete_env_var(self, name: str) -> None:
        """
        删除环境变量，不存在时视为成功。

        参数:
            name: 环境变量名称
        """
        key = self._open_key(writable=True)
        try:
            winreg.DeleteValue(key, name)
            logger.info(f"删除环境变量 {name}")
        except FileNotFoundError:
            logger.debug(f"环境变量 {name} 不存在，无需删除")
        except PermissionError as e:
            error_msg = f"没有权限删除环境变量 {name}: {e}"
            logger.error(error_msg)
            raise PermissionDeniedError(error_msg) from e
        except OSError as e:
            error_msg = f"删除环境变量 {name} 失败: {e}"
            logger.error(error_msg)
            raise RegistryAccessError(error_msg) from e
        finally:
            winreg.CloseKey(key)

    def get_all_env_vars(self) -> Dict[str, str]:
        """
        获取所有系统环境变量。

        返回:
            环境变量名称到值的映射字典
        """
        key = self._open_key(writable=False)
        result = {}
        try:
            index = 0
            while True:
                try:
                    name, value, _ = winreg.EnumValue(key, index)
                except OSError:
                    break
                result[name] = value
                index += 1
        finally:
            winreg.CloseKey(key)
        logger.debug(f"已获取 {len(result)} 个环境变量")
        return result

    def check_write_access(self) -> None:
        """
        检查当前进程能否写入系统环境变量。

        抛出:
            PermissionDeniedError: 未以管理员身份运行或无法以写模式打开键
        """
        if not is_admin():
            raise PermissionDeniedError("修改系统环境变量需要管理员权限，请以管理员身份运行")
        key = self._open_key(writable=True)
        winreg.CloseKey(key)

    def broadcast_change(self) -> None:
        broadcast_environment_change()
