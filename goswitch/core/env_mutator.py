"""
环境变量修改模块。

把系统级 GOROOT、GOARCH、PATH 切换到指定的 Go 安装：先做写前快照，
逐个变量原子写入，中途失败时把已写入的变量补偿回原值。
"""

import ntpath
import os
import re
import subprocess
from pathlib import Path
from typing import Callable, Dict, List, Optional

from goswitch.utils.logger import get_logger
from goswitch.core.backup_store import BackupStore
from goswitch.core.env_store import EnvStoreError
from goswitch.core.install_pipeline import validate_goroot
from goswitch.core.interfaces import IEnvironmentStore
from goswitch.core.models import (
    ENV_GOARCH,
    ENV_GOROOT,
    ENV_PATH,
    MANAGED_ENV_VARS,
    PATH_SEPARATOR,
    EnvSnapshot,
    InstalledVersion,
)

logger = get_logger()

GOROOT_BIN_REFERENCE = "%GOROOT%\\bin"
VERIFY_TIMEOUT = 10


class EnvMutatorError(Exception):
    """环境变量修改错误异常。"""
    pass


class MutationPartialFailureError(EnvMutatorError):
    """
    某个变量写入失败异常。

    已写入的变量会先被补偿回原值；compensation_errors 记录补偿本身的失败，
    为空表示系统环境已完全恢复。
    """

    def __init__(self, variable: str, cause: Exception, compensation_errors: Optional[Dict[str, str]] = None):
        self.variable = variable
        self.cause = cause
        self.compensation_errors = compensation_errors or {}
        message = f"写入环境变量 {variable} 失败: {cause}"
        if self.compensation_errors:
            details = "; ".join(f"{k}: {v}" for k, v in self.compensation_errors.items())
            message += f"；以下变量未能恢复原值: {details}"
        else:
            message += "；已写入的变量均已恢复原值"
        super().__init__(message)


class VerificationFailedError(EnvMutatorError):
    """切换后 go version 校验失败异常。"""
    pass


def split_search_path(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [entry.strip() for entry in value.split(PATH_SEPARATOR) if entry.strip()]


def _normalize_entry(entry: str) -> str:
    return ntpath.normcase(ntpath.normpath(entry.strip().rstrip("\\/")))


def derive_search_path(
    current_path: Optional[str],
    new_bin: str,
    old_goroot: Optional[str] = None,
    managed_root: Optional[str] = None,
) -> str:
    """
    计算新的 PATH。

    移除旧的 GOROOT\\bin、%GOROOT%\\bin、受管安装目录下各版本的 bin
    以及新 bin 本身，再把新 bin 放到最前面，其余条目保持原顺序。

    参数:
        current_path: 当前 PATH
        new_bin: 新版本的 bin 目录
        old_goroot: 修改前的 GOROOT
        managed_root: 受管安装根目录（go-version）

    返回:
        新的 PATH 字符串
    """
    removed = {_normalize_entry(new_bin), _normalize_entry(GOROOT_BIN_REFERENCE)}
    if old_goroot:
        removed.add(_normalize_entry(ntpath.join(old_goroot, "bin")))
    managed = _normalize_entry(managed_root) if managed_root else None

    kept = []
    for entry in split_search_path(current_path):
        normalized = _normalize_entry(entry)
        if normalized in removed:
            logger.debug(f"从 PATH 移除旧的 Go 条目: {entry}")
            continue
        if managed and ntpath.basename(normalized) == "bin" and \
                ntpath.dirname(ntpath.dirname(normalized)) == managed:
            logger.debug(f"从 PATH 移除受管版本的 bin: {entry}")
            continue
        kept.append(entry)

    return PATH_SEPARATOR.join([new_bin] + kept)


class ToolchainVerifier:
    """
    切换后的自检：在刚写入的 PATH 下用新的环境变量运行 <bin>/go version，确认输出的版本号。
    """

    def __init__(self, timeout: int = VERIFY_TIMEOUT, runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.timeout = timeout
        self._runner = runner

    def verify(self, installed: InstalledVersion, env_values: Dict[str, str]) -> str:
        """
        运行 go version 并检查版本号。

        参数:
            installed: 刚切换到的版本
            env_values: 刚写入的 GOROOT / GOARCH / PATH

        返回:
            go version 的输出

        抛出:
            VerificationFailedError: 无法运行或版本不符
        """
        bin_dir = Path(installed.bin_dir)
        executable = bin_dir / "go.exe"
        if not executable.is_file():
            executable = bin_dir / "go"

        env = dict(os.environ)
        env[ENV_GOROOT] = env_values[ENV_GOROOT]
        env[ENV_GOARCH] = env_values[ENV_GOARCH]
        env["PATH"] = ntpath.expandvars(env_values[ENV_PATH])

        try:
            result = self._runner(
                [str(executable), "version"],
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
                creationflags=getattr(subprocess, "CREATE_NO_WINDOW", 0),
            )
        except subprocess.TimeoutExpired as e:
            raise VerificationFailedError(f"运行 go version 超时 ({self.timeout}秒)") from e
        except OSError as e:
            raise VerificationFailedError(f"无法运行 {executable}: {e}") from e

        output = f"{result.stdout or ''}{result.stderr or ''}".strip()
        if result.returncode != 0:
            raise VerificationFailedError(f"go version 返回退出码 {result.returncode}: {output}")

        if not re.search(rf"\bgo{re.escape(installed.version)}(?![\d.])", output):
            raise VerificationFailedError(f"go version 输出与期望版本 {installed.version} 不符: {output}")

        logger.info(f"校验通过: {output}")
        return output


class EnvironmentMutator:
    """
    环境变量修改器类。

    apply 之后系统环境要么完整切换到新版本，要么完整保持原值；
    广播失败只记录日志。
    """

    def __init__(
        self,
        store: IEnvironmentStore,
        backup_store: BackupStore,
        verifier: Optional[ToolchainVerifier] = None,
        managed_root: Optional[Path] = None,
        verify_after_apply: bool = True,
    ):
        """
        初始化环境变量修改器。

        参数:
            store: 系统环境变量存储
            backup_store: 备份存储
            verifier: 切换后的自检器，为 None 时不做自检
            managed_root: 受管安装根目录
            verify_after_apply: apply 未指定 verify 时的默认值
        """
        self.store = store
        self.backup_store = backup_store
        self.verifier = verifier
        self.managed_root = str(managed_root) if managed_root else None
        self.verify_after_apply = verify_after_apply

    def read_current(self) -> Dict[str, Optional[str]]:
        """读取三个受管变量的当前值，不存在的为 None。"""
        return {name: self.store.get_env_var(name) for name in MANAGED_ENV_VARS}

    def derive(self, installed: InstalledVersion, current: Dict[str, Optional[str]]) -> Dict[str, str]:
        return {
            ENV_GOROOT: installed.path,
            ENV_GOARCH: installed.goarch,
            ENV_PATH: derive_search_path(
                current.get(ENV_PATH),
                installed.bin_dir,
                old_goroot=current.get(ENV_GOROOT),
                managed_root=self.managed_root,
            ),
        }

    def _write_one(self, name: str, value: Optional[str]) -> None:
        if value is None:
            self.store.delete_env_var(name)
        else:
            self.store.set_env_var(name, value)

    def write_variables(self, values: Dict[str, Optional[str]], originals: Dict[str, Optional[str]]) -> None:
        """
        按顺序写入变量，值为 None 表示删除该变量。

        某个变量写入失败时，已写入的变量按逆序恢复为 originals 中的值
        （原本不存在的变量会被删除），然后抛出 MutationPartialFailureError；
        被 KeyboardInterrupt 等中断时同样先恢复，再继续抛出原异常。

        参数:
            values: 要写入的值
            originals: 写入前的值，用于补偿
        """
        written: List[str] = []
        for name in MANAGED_ENV_VARS:
            if name not in values:
                continue
            try:
                self._write_one(name, values[name])
            except EnvStoreError as e:
                logger.error(f"写入环境变量 {name} 失败，开始恢复已写入的变量: {e}")
                compensation_errors = self._compensate(written, originals)
                raise MutationPartialFailureError(name, e, compensation_errors) from e
            except BaseException:
                logger.error(f"写入环境变量 {name} 时被中断，恢复已写入的变量")
                self._compensate(written, originals)
                raise
            written.append(name)

    def _compensate(self, written: List[str], originals: Dict[str, Optional[str]]) -> Dict[str, str]:
        errors = {}
        for name in reversed(written):
            try:
                self._write_one(name, originals.get(name))
                logger.info(f"已恢复环境变量 {name}")
            except EnvStoreError as e:
                logger.critical(f"恢复环境变量 {name} 失败: {e}")
                errors[name] = str(e)
        return errors

    def broadcast(self) -> None:
        try:
            self.store.broadcast_change()
        except (EnvStoreError, OSError) as e:
            logger.warning(f"广播环境变量更改消息失败: {e}")

    def apply(self, installed: InstalledVersion, verify: Optional[bool] = None) -> EnvSnapshot:
        """
        把系统环境切换到指定版本。

        参数:
            installed: 已登记的安装版本
            verify: 是否在切换后运行 go version 自检，None 表示使用默认设置

        返回:
            写前快照

        抛出:
            InvalidInstallError: 安装目录不完整
            PermissionDeniedError: 没有写权限
            SnapshotWriteError: 快照无法写入
            MutationPartialFailureError: 写入中途失败（已补偿）
            VerificationFailedError: 自检失败（已恢复原值）
        """
        validate_goroot(installed.path)
        self.store.check_write_access()

        originals = self.read_current()
        snapshot = self.backup_store.write_snapshot(
            originals[ENV_GOROOT] or "",
            originals[ENV_GOARCH] or "",
            originals[ENV_PATH] or "",
        )

        new_values = self.derive(installed, originals)
        logger.info(f"切换到 Go {installed.version} ({installed.arch}): GOROOT={new_values[ENV_GOROOT]}")
        self.write_variables(new_values, originals)
        self.broadcast()

        should_verify = self.verify_after_apply if verify is None else verify
        if should_verify and self.verifier is not None:
            try:
                self.verifier.verify(installed, new_values)
            except VerificationFailedError as e:
                logger.error(f"切换后自检失败，恢复原环境变量: {e}")
                self.write_variables(originals, new_values)
                self.broadcast()
                raise

        logger.info(f"环境变量已切换到 Go {installed.version} ({installed.arch})")
        return snapshot
