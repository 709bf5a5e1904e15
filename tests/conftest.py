"""
Pytest configuration and shared fixtures for GoSwitch tests.
"""

import hashlib
import io
import zipfile
from pathlib import Path
from typing import Dict, Iterable, Optional

import pytest

from goswitch.core.backup_store import BackupStore
from goswitch.core.config_manager import ConfigManager
from goswitch.core.env_store import EnvStoreError, PermissionDeniedError
from goswitch.core.interfaces import IEnvironmentStore
from goswitch.core.models import InstalledVersion, ReleaseDescriptor


class InMemoryEnvStore(IEnvironmentStore):
    """
    内存中的系统环境变量存储。

    fail_on 中列出的变量在写入时抛出 EnvStoreError，用于模拟写入中途失败。
    """

    def __init__(self, values: Optional[Dict[str, str]] = None, writable: bool = True):
        self.values: Dict[str, str] = dict(values or {})
        self.writable = writable
        self.fail_on: Dict[str, int] = {}
        self.writes = []
        self.broadcasts = 0

    def fail_writes(self, name: str, times: int = 1) -> None:
        self.fail_on[name] = times

    def _maybe_fail(self, name: str) -> None:
        remaining = self.fail_on.get(name, 0)
        if remaining > 0:
            self.fail_on[name] = remaining - 1
            raise EnvStoreError(f"模拟写入 {name} 失败")

    def get_env_var(self, name: str) -> Optional[str]:
        return self.values.get(name)

    def set_env_var(self, name: str, value: str) -> None:
        self._maybe_fail(name)
        self.writes.append((name, value))
        self.values[name] = value

    def delete_env_var(self, name: str) -> None:
        self._maybe_fail(name)
        self.writes.append((name, None))
        self.values.pop(name, None)

    def get_all_env_vars(self) -> Dict[str, str]:
        return dict(self.values)

    def check_write_access(self) -> None:
        if not self.writable:
            raise PermissionDeniedError("没有管理员权限")

    def broadcast_change(self) -> None:
        self.broadcasts += 1


def build_go_zip(version: str = "1.21.0", wrapper: str = "go", extra: Optional[Dict[str, bytes]] = None) -> bytes:
    """构建一个最小的 Go 发布包压缩包。"""
    prefix = f"{wrapper}/" if wrapper else ""
    files = {
        f"{prefix}VERSION": f"go{version}\n".encode(),
        f"{prefix}bin/go.exe": b"MZ fake go",
        f"{prefix}bin/gofmt.exe": b"MZ fake gofmt",
        f"{prefix}pkg/include/asm.h": b"",
        f"{prefix}src/runtime/runtime.go": b"package runtime\n",
    }
    files.update(extra or {})

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", zipfile.ZIP_DEFLATED) as zf:
        if wrapper:
            zf.writestr(f"{wrapper}/", b"")
        for name, data in files.items():
            zf.writestr(name, data)
    return buffer.getvalue()


def build_raw_zip(entries: Iterable[tuple]) -> bytes:
    """按 (条目名, 内容) 原样构建压缩包，不做任何名称校验。"""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as zf:
        for name, data in entries:
            zf.writestr(zipfile.ZipInfo(name), data)
    return buffer.getvalue()


def make_goroot(path: Path) -> Path:
    """在指定位置创建一个结构完整的 Go 安装目录。"""
    (path / "bin").mkdir(parents=True, exist_ok=True)
    (path / "pkg").mkdir(exist_ok=True)
    (path / "src").mkdir(exist_ok=True)
    (path / "bin" / "go.exe").write_bytes(b"MZ fake go")
    return path


def make_descriptor(content: bytes, version: str = "1.21.0", arch: str = "x64",
                    base_url: str = "https://go.dev/dl/") -> ReleaseDescriptor:
    goarch = {"x86": "386", "x64": "amd64", "arm": "arm", "arm64": "arm64"}[arch]
    return ReleaseDescriptor(
        version=version,
        arch=arch,
        os="windows",
        download_url=f"{base_url}go{version}.windows-{goarch}.zip",
        sha256=hashlib.sha256(content).hexdigest(),
        size=len(content),
    )


@pytest.fixture
def env_store():
    """预置了典型系统 PATH 的内存环境变量存储。"""
    return InMemoryEnvStore({
        "PATH": r"C:\Windows\system32;C:\Windows;%SystemRoot%\System32\Wbem",
    })


@pytest.fixture
def base_dir(tmp_path):
    return tmp_path / "data"


@pytest.fixture
def config_manager(base_dir):
    return ConfigManager(str(base_dir))


@pytest.fixture
def backup_store(config_manager):
    return BackupStore(config_manager.backup_dir)


@pytest.fixture
def go_zip():
    return build_go_zip


@pytest.fixture
def raw_zip():
    return build_raw_zip


@pytest.fixture
def goroot_factory():
    return make_goroot


@pytest.fixture
def descriptor_factory():
    return make_descriptor


@pytest.fixture
def installed_factory(config_manager):
    """在 go-version 下创建完整的安装目录并返回对应记录。"""

    def _make(version: str = "1.21.0", arch: str = "x64") -> InstalledVersion:
        path = make_goroot(config_manager.versions_dir / f"{version}-{arch}")
        return InstalledVersion(version=version, arch=arch, path=str(path), install_date="2024-01-01T00:00:00")

    return _make
