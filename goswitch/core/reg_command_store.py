"""
reg.exe 环境变量存储模块。

在 winreg 不可用时，通过调用 reg.exe 读写系统环境变量。
"""

import re
import subprocess
from typing import Callable, Dict, List, Optional

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

REG_KEY = "HKLM\\" + ENV_KEY_PATH
REG_COMMAND_TIMEOUT = 10

_VALUE_LINE = re.compile(r'^\s{4}(.+?)\s{4}(REG_(?:EXPAND_)?SZ)(?:\s{4}(.*))?$')
_ACCESS_DENIED_MARKERS = ("access is denied", "拒绝访问")
_NOT_FOUND_MARKERS = ("unable to find", "找不到")


class RegCommandEnvStore(IEnvironmentStore):
    """
    基于 reg.exe 的系统环境变量存储。

    参数:
        runner: 执行命令的函数，签名与 subprocess.run 一致
    """

    def __init__(self, runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self._runner = runner

    def _run(self, args: List[str]) -> subprocess.CompletedProcess:
        cmd = ["reg"] + args
        logger.debug(f"执行命令: {' '.join(cmd)}")
        try:
            return self._runner(
                cmd,
                capture_output=True,
                text=True,
                timeout=REG_COMMAND_TIMEOUT,
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
        except subprocess.TimeoutExpired as e:
            raise EnvStoreError(f"reg 命令执行超时 ({REG_COMMAND_TIMEOUT}秒)") from e
        except OSError as e:
            raise EnvStoreError(f"无法执行 reg 命令: {e}") from e

    @staticmethod
    def _raise_for_failure(result: subprocess.CompletedProcess, action: str) -> None:
        output = f"{result.stdout or ''}{result.stderr or ''}".strip()
        if any(marker in output.lower() for marker in _ACCESS_DENIED_MARKERS):
            raise PermissionDeniedError(f"{action}失败，没有权限: {output}")
        raise EnvStoreError(f"{action}失败 (退出码 {result.returncode}): {output}")

    @staticmethod
    def _parse_values(output: str) -> Dict[str, str]:
        values = {}
        for line in output.splitlines():
            match = _VALUE_LINE.match(line)
            if match:
                name, _, value = match.groups()
                values[name] = value or ""
        return values

    def get_env_var(self, name: str) -> Optional[str]:
        result = self._run(["query", REG_KEY, "/v", name])
        if result.returncode != 0:
            output = f"{result.stdout or ''}{result.stderr or ''}".lower()
            if any(marker in output for marker in _NOT_FOUND_MARKERS):
                logger.debug(f"环境变量 {name} 不存在")
                return None
            self._raise_for_failure(result, f"读取环境变量 {name} ")
        values = self._parse_values(result.stdout or "")
        for key, value in values.items():
            if key.lower() == name.lower():
                return value
        return None

    def set_env_var(self, name: str, value: str) -> None:
        reg_type = "REG_EXPAND_SZ" if "%" in value else "REG_SZ"
        # reg.exe 会把结尾的反斜杠当作引号转义
        data = value + "\\" if value.endswith("\\") else value
        result = self._run(["add", REG_KEY, "/v", name, "/t", reg_type, "/d", data, "/f"])
        if result.returncode != 0:
            self._raise_for_failure(result, f"设置环境变量 {name} ")
        logger.info(f"设置环境变量 {name}={value}")

    def delete_env_var(self, name: str) -> None:
        if self.get_env_var(name) is None:
            logger.debug(f"环境变量 {name} 不存在，无需删除")
            return
        result = self._run(["delete", REG_KEY, "/v", name, "/f"])
        if result.returncode != 0:
            self._raise_for_failure(result, f"删除环境变量 {name} ")
        logger.info(f"删除环境变量 {name}")

    def get_all_env_vars(self) -> Dict[str, str]:
        result = self._run(["query", REG_KEY])
        if result.returncode != 0:
            self._raise_for_failure(result, "读取系统环境变量")
        values = self._parse_values(result.stdout or "")
        logger.debug(f"已获取 {len(values)} 个环境变量")
        return values

    def check_write_access(self) -> None:
        if not is_admin():
            raise PermissionDeniedError("修改系统环境变量需要管理员权限，请以管理员身份运行")

    def broadcast_change(self) -> None:
        broadcast_environment_change()
