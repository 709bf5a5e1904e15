"""
版本工具模块。

提供版本号解析、排序以及架构名称标准化等工具函数。
"""

import platform
import re
from typing import Callable, Iterable, List, Optional, TypeVar

T = TypeVar("T")

VERSION_PATTERN = re.compile(r'^v?(?:go)?(\d+)\.(\d+)(?:\.(\d+))?$')

SUPPORTED_ARCHS = ("x86", "x64", "arm", "arm64")

# 规范架构名 -> GOARCH
GOARCH_BY_ARCH = {
    "x86": "386",
    "x64": "amd64",
    "arm": "arm",
    "arm64": "arm64",
}

_ARCH_ALIASES = {
    "x86": "x86",
    "386": "x86",
    "32": "x86",
    "86": "x86",
    "i386": "x86",
    "i686": "x86",
    "x64": "x64",
    "amd64": "x64",
    "x86-64": "x64",
    "x86_64": "x64",
    "64": "x64",
    "arm": "arm",
    "armv6l": "arm",
    "armv7l": "arm",
    "arm64": "arm64",
    "aarch64": "arm64",
}


def normalize_version(version: str) -> Optional[str]:
    """
    去掉 "v"/"go" 前缀，返回规范版本号；格式无效返回 None。

    参数:
        version: 原始版本号，例如 "go1.21.0"、"v1.20"

    返回:
        规范版本号，例如 "1.21.0"
    """
    if not version:
        return None
    match = VERSION_PATTERN.match(version.strip())
    if not match:
        return None
    return ".".join(part for part in match.groups() if part is not None)


def parse_version(version_str: str) -> tuple:
    """
    解析版本字符串为可比较的元组。

    缺失的段按 0 补齐到三段，"1.21" 与 "1.21.0" 比较结果相等。

    参数:
        version_str: 版本字符串

    返回:
        版本元组 (major, minor, patch)
    """
    parts = [int(p) for p in re.findall(r'\d+', version_str or "")]
    while len(parts) < 3:
        parts.append(0)
    return tuple(parts)


def sort_versions_desc(items: Iterable[T], version_of: Callable[[T], str] = str) -> List[T]:
    """
    按版本号数值降序排列，版本号相同的元素保持原有顺序。

    参数:
        items: 版本号字符串，或由 version_of 取出版本号的对象
        version_of: 从元素取出版本号的函数

    返回:
        排序后的列表，例如 ["1.10.1", "1.9.10", "1.2.0"]
    """
    return sorted(items, key=lambda item: parse_version(version_of(item)), reverse=True)


def normalize_arch(arch: str) -> Optional[str]:
    """
    标准化架构名称。

    参数:
        arch: 用户输入或上游目录中的架构名，例如 "amd64"、"386"、"x86-64"

    返回:
        规范架构名（x86、x64、arm、arm64），不支持返回 None
    """
    if not arch:
        return None
    return _ARCH_ALIASES.get(arch.strip().lower())


def host_arch() -> str:
    """
    获取当前系统架构，无法识别时按 x64 处理。
    """
    return normalize_arch(platform.machine()) or "x64"


def install_dir_name(version: str, arch: str) -> str:
    """
    返回版本安装目录名，格式为 "<version>-<arch>"。
    """
    return f"{version}-{arch}"
