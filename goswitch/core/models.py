"""
核心数据模型。

定义发布版本描述、已安装版本、环境变量快照以及安装流程使用的枚举。
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from goswitch.core.version_utils import GOARCH_BY_ARCH, install_dir_name

ENV_GOROOT = "GOROOT"
ENV_GOARCH = "GOARCH"
ENV_PATH = "PATH"

# 写入顺序即补偿回滚的逆序
MANAGED_ENV_VARS = (ENV_GOROOT, ENV_GOARCH, ENV_PATH)

# Windows 环境变量 PATH 的分隔符
PATH_SEPARATOR = ";"


class ActivationPolicy(str, Enum):
    """安装完成后是否立即切换为当前版本。"""

    ALWAYS = "always"
    NEVER = "never"
    ASK = "ask"


class InstallState(Enum):
    """单次安装尝试的状态机。"""

    NOT_RESOLVED = "NotResolved"
    RESOLVED = "Resolved"
    ARTIFACT_READY = "ArtifactReady"
    EXTRACTED = "Extracted"
    REGISTERED = "Registered"


@dataclass(frozen=True)
class ReleaseDescriptor:
    """
    上游发布的一个安装包。

    (version, arch) 唯一标识一个发布版本。
    """

    version: str
    arch: str
    os: str
    download_url: str
    sha256: str
    size: int = 0
    kind: str = "archive"

    @property
    def key(self) -> str:
        return install_dir_name(self.version, self.arch)

    @property
    def goarch(self) -> str:
        return GOARCH_BY_ARCH[self.arch]

    @property
    def filename(self) -> str:
        """下载缓存中的确定性文件名，与上游文件名一致。"""
        return f"go{self.version}.windows-{self.goarch}.zip"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ReleaseDescriptor":
        return cls(
            version=str(data["version"]),
            arch=str(data["arch"]),
            os=str(data.get("os", "windows")),
            download_url=str(data["download_url"]),
            sha256=str(data["sha256"]).lower(),
            size=int(data.get("size") or 0),
            kind=str(data.get("kind", "archive")),
        )


@dataclass(frozen=True)
class InstalledVersion:
    """版本注册表中的一条已安装记录。"""

    version: str
    arch: str
    path: str
    install_date: Optional[str] = field(default=None, compare=False)

    @property
    def key(self) -> str:
        return install_dir_name(self.version, self.arch)

    @property
    def goarch(self) -> str:
        return GOARCH_BY_ARCH[self.arch]

    @property
    def bin_dir(self) -> str:
        return str(Path(self.path) / "bin")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstalledVersion":
        return cls(
            version=str(data["version"]),
            arch=str(data["arch"]),
            path=str(data["path"]),
            install_date=data.get("install_date"),
        )


@dataclass(frozen=True)
class EnvSnapshot:
    """
    修改前的环境变量快照。

    四个字段（timestamp、install_root、architecture、search_path）
    任一为空即视为无效，不参与"最新备份"的选择。
    """

    timestamp: str
    install_root: str
    architecture: str
    search_path: str
    backup_file: str = ""

    @property
    def is_valid(self) -> bool:
        return all((self.timestamp, self.install_root, self.architecture, self.search_path))

    def env_values(self) -> Dict[str, str]:
        """按写入顺序返回快照记录的三个环境变量值。"""
        return {
            ENV_GOROOT: self.install_root,
            ENV_GOARCH: self.architecture,
            ENV_PATH: self.search_path,
        }

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], backup_file: str = "") -> "EnvSnapshot":
        def _text(key: str) -> str:
            value = data.get(key)
            return value if isinstance(value, str) else ""

        return cls(
            timestamp=_text("timestamp"),
            install_root=_text("install_root"),
            architecture=_text("architecture"),
            search_path=_text("search_path"),
            backup_file=_text("backup_file") or backup_file,
        )
