"""
安装流水线模块。

把目录中的一个发布包变成可用的安装目录：解析、获取（缓存或下载并校验
SHA-256）、安全解压、完整性校验，最后登记到版本注册表。
"""

import hashlib
import os
import re
import shutil
import threading
import zipfile
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional, Tuple

import requests

from goswitch.utils.logger import get_logger
from goswitch.utils.speed_limiter import SpeedLimiter
from goswitch.core.catalog import ReleaseCatalog
from goswitch.core.config_manager import ConfigManager
from goswitch.core.models import InstalledVersion, InstallState, ReleaseDescriptor
from goswitch.core.version_registry import VersionRegistry
from goswitch.core.version_utils import install_dir_name

logger = get_logger()

CHUNK_SIZE = 64 * 1024
PART_SUFFIX = ".part"
REQUIRED_SUBDIRS = ("bin", "pkg", "src")
GO_EXECUTABLES = ("go.exe", "go")

_DRIVE_PATTERN = re.compile(r'^[A-Za-z]:')

ProgressCallback = Callable[[int, int], None]


class InstallPipelineError(Exception):
    """安装流水线错误异常。"""
    pass


class DownloadError(InstallPipelineError):
    """下载错误异常（网络错误、非 2xx 响应、超时或内容不完整）。"""
    pass


class ChecksumMismatchError(InstallPipelineError):
    """安装包 SHA-256 校验失败异常。"""

    def __init__(self, path: Path, expected: str, actual: str):
        self.path = path
        self.expected = expected
        self.actual = actual
        super().__init__(f"文件 {path} 的 SHA-256 校验失败: 期望 {expected}，实际 {actual}")


class ExtractionError(InstallPipelineError):
    """解压错误异常。"""
    pass


class PathTraversalError(ExtractionError):
    """压缩包条目试图写到目标目录之外异常。"""
    pass


class InvalidInstallError(InstallPipelineError):
    """安装目录不完整异常。"""
    pass


class InstallCancelledError(InstallPipelineError):
    """安装被取消异常。"""
    pass


def file_sha256(path: Path) -> str:
    """
    计算文件的 SHA-256 十六进制摘要。
    """
    hasher = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def validate_goroot(path) -> None:
    """
    检查目录是否是完整的 Go 安装。

    要求存在 bin、pkg、src 三个子目录，且 bin 下有 go 可执行文件。

    参数:
        path: 安装目录

    抛出:
        InvalidInstallError: 缺少必需的子目录或文件
    """
    root = Path(path)
    if not root.is_dir():
        raise InvalidInstallError(f"安装目录不存在: {root}")

    missing = [name for name in REQUIRED_SUBDIRS if not (root / name).is_dir()]
    if missing:
        raise InvalidInstallError(f"安装目录 {root} 缺少必需的子目录: {', '.join(missing)}")

    if not any((root / "bin" / exe).is_file() for exe in GO_EXECUTABLES):
        raise InvalidInstallError(f"安装目录 {root} 的 bin 下没有 go 可执行文件")


def is_valid_goroot(path) -> bool:
    try:
        validate_goroot(path)
    except InvalidInstallError:
        return False
    return True


def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise InstallCancelledError("安装已取消")


def _entry_parts(name: str) -> Tuple[str, ...]:
    """
    把压缩包条目名拆成路径段，拒绝绝对路径和盘符。
    """
    normalized = name.replace("\\", "/")
    if normalized.startswith("/") or _DRIVE_PATTERN.match(normalized):
        raise PathTraversalError(f"压缩包包含绝对路径条目: {name}")
    return tuple(part for part in PurePosixPath(normalized).parts if part not in ("", "."))


def _wrapper_prefix(names: List[str]) -> Optional[str]:
    """
    如果所有条目都位于同一个顶层目录下（例如 go/），返回该目录名。
    """
    tops = set()
    for name in names:
        parts = _entry_parts(name)
        if not parts:
            continue
        is_dir_entry = name.replace("\\", "/").endswith("/")
        if len(parts) == 1 and not is_dir_entry:
            return None
        tops.add(parts[0])
        if len(tops) > 1:
            return None
    if len(tops) == 1:
        prefix = tops.pop()
        if prefix != "..":
            return prefix
    return None


def _contained_path(target_dir: str, parts: Tuple[str, ...], name: str) -> str:
    """
    计算条目的落盘路径，并确认它位于目标目录之内。
    """
    candidate = os.path.normpath(os.path.join(target_dir, *parts))
    if os.path.commonpath([target_dir, candidate]) != target_dir:
        raise PathTraversalError(f"压缩包条目 {name} 指向目标目录之外")
    return candidate


class InstallPipeline:
    """
    安装流水线类。

    单次 install 调用按 NotResolved → Resolved → ArtifactReady →
    Extracted → Registered 推进，只有最后一步才修改版本注册表。
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        catalog: ReleaseCatalog,
        registry: VersionRegistry,
        session: Optional[requests.Session] = None,
        speed_limiter: Optional[SpeedLimiter] = None,
    ):
        """
        初始化安装流水线。

        参数:
            config_manager: 配置管理器实例
            catalog: 发布版本目录
            registry: 版本注册表
            session: requests 会话，省略时新建
            speed_limiter: 下载限速器，省略时按配置创建
        """
        self.config_manager = config_manager
        self.catalog = catalog
        self.registry = registry
        self.session = session or requests.Session()
        self.speed_limiter = speed_limiter
        self.state = InstallState.NOT_RESOLVED

    def resolve(self, version: str, arch: str, force_update: bool = False) -> ReleaseDescriptor:
        """
        在版本目录中查找 (version, arch) 对应的发布包。
        """
        return self.catalog.resolve(version, arch, force_update=force_update)

    def acquire(
        self,
        descriptor: ReleaseDescriptor,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Path:
        """
        准备好经过校验的安装包文件。

        缓存中已有同名文件时先校验哈希：一致则直接复用，不访问网络；
        不一致则删除后重新下载一次。新下载的文件哈希不一致直接报错。

        参数:
            descriptor: 发布包描述
            progress_callback: 进度回调，参数为 (已下载字节, 总字节)
            cancel_event: 取消事件

        返回:
            安装包的本地路径

        抛出:
            DownloadError: 下载失败
            ChecksumMismatchError: 新下载的文件哈希不一致
            InstallCancelledError: 下载被取消
        """
        download_dir = Path(self.config_manager.download_dir)
        download_dir.mkdir(parents=True, exist_ok=True)
        archive_path = download_dir / descriptor.filename

        if archive_path.is_file():
            actual = file_sha256(archive_path)
            if actual == descriptor.sha256:
                logger.info(f"使用已缓存的安装包: {archive_path}")
                return archive_path
            logger.warning(
                f"缓存的安装包 {archive_path} 校验失败 (期望 {descriptor.sha256}，实际 {actual})，重新下载"
            )
            archive_path.unlink()

        self._download(descriptor, archive_path, progress_callback, cancel_event)
        return archive_path

    def _download(
        self,
        descriptor: ReleaseDescriptor,
        archive_path: Path,
        progress_callback: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> None:
        temp_path = archive_path.with_name(archive_path.name + PART_SUFFIX)
        speed_limiter = self.speed_limiter or SpeedLimiter(self.config_manager.get_download_speed_limit())
        connect_timeout, read_timeout = self.config_manager.get_timeouts()
        url = descriptor.download_url

        logger.info(f"正在从 {url} 下载 Go {descriptor.version} ({descriptor.arch})")
        try:
            try:
                response = self.session.get(url, stream=True, timeout=(connect_timeout, read_timeout))
                response.raise_for_status()
            except requests.exceptions.RequestException as e:
                raise DownloadError(f"下载 {url} 失败: {e}") from e

            with response:
                total = int(response.headers.get("content-length") or 0) or descriptor.size
                expected_length = int(response.headers.get("content-length") or 0)
                hasher = hashlib.sha256()
                written = 0
                with open(temp_path, "wb") as f:
                    try:
                        for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                            _check_cancelled(cancel_event)
                            if not chunk:
                                continue
                            speed_limiter.write_with_limit(f, chunk)
                            hasher.update(chunk)
                            written += len(chunk)
                            if progress_callback:
                                progress_callback(written, total)
                    except requests.exceptions.RequestException as e:
                        raise DownloadError(f"下载 {url} 时连接中断: {e}") from e
                    f.flush()
                    os.fsync(f.fileno())

            if expected_length and written != expected_length:
                raise DownloadError(f"下载内容不完整: 期望 {expected_length} 字节，实际 {written} 字节")

            actual = hasher.hexdigest()
            if actual != descriptor.sha256:
                raise ChecksumMismatchError(archive_path, descriptor.sha256, actual)

            os.replace(temp_path, archive_path)
            logger.info(f"下载完成并通过校验: {archive_path}")
        except InstallCancelledError:
            logger.info(f"下载已取消: {url}")
            raise
        finally:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError as cleanup_error:
                    logger.warning(f"清理临时文件 {temp_path} 失败: {cleanup_error}")

    def extract(
        self,
        archive_path: Path,
        target_dir: Path,
        cancel_event: Optional[threading.Event] = None,
    ) -> Path:
        """
        把安装包解压到目标目录。

        写入任何文件前先检查全部条目，存在越界条目时不做任何修改。
        已存在的目标目录会被整体替换而不是合并，顶层的 go/ 包装目录
        会被去掉。解压中途失败时删除已写入的目标目录。

        参数:
            archive_path: 安装包路径
            target_dir: 目标目录
            cancel_event: 取消事件

        返回:
            目标目录

        抛出:
            PathTraversalError: 条目指向目标目录之外
            ExtractionError: 压缩包损坏或写入失败
            InstallCancelledError: 解压被取消
        """
        target = os.path.abspath(str(target_dir))
        try:
            zf = zipfile.ZipFile(archive_path, "r")
        except (zipfile.BadZipFile, OSError) as e:
            raise ExtractionError(f"无法打开压缩包 {archive_path}: {e}") from e

        with zf:
            members = zf.infolist()
            names = [m.filename for m in members]
            prefix = _wrapper_prefix(names)

            plan = []
            for member in members:
                parts = _entry_parts(member.filename)
                if prefix is not None:
                    parts = parts[1:]
                if not parts:
                    continue
                dest = _contained_path(target, parts, member.filename)
                if dest != target:
                    plan.append((member, dest))

            logger.info(f"正在解压 {archive_path} 到 {target}")
            if os.path.exists(target):
                logger.debug(f"删除已存在的目标目录: {target}")
                shutil.rmtree(target)

            try:
                os.makedirs(target, exist_ok=True)
                for member, dest in plan:
                    _check_cancelled(cancel_event)
                    if os.path.commonpath([target, os.path.normpath(dest)]) != target:
                        raise PathTraversalError(f"压缩包条目 {member.filename} 指向目标目录之外")
                    if member.is_dir():
                        os.makedirs(dest, exist_ok=True)
                        continue
                    os.makedirs(os.path.dirname(dest), exist_ok=True)
                    with zf.open(member) as src, open(dest, "wb") as out:
                        shutil.copyfileobj(src, out, CHUNK_SIZE)
            except BaseException as e:
                shutil.rmtree(target, ignore_errors=True)
                if isinstance(e, (OSError, zipfile.BadZipFile, EOFError)):
                    raise ExtractionError(f"解压 {archive_path} 失败: {e}") from e
                raise

        logger.info(f"解压完成: {target}")
        return Path(target)

    def install(
        self,
        version: str,
        arch: str,
        progress_callback: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
        force_update: bool = False,
    ) -> InstalledVersion:
        """
        安装指定版本并登记到版本注册表。

        参数:
            version: 规范版本号
            arch: 规范架构名
            progress_callback: 下载进度回调
            cancel_event: 取消事件
            force_update: 是否强制刷新版本目录

        返回:
            已安装版本记录
        """
        self.state = InstallState.NOT_RESOLVED
        descriptor = self.resolve(version, arch, force_update=force_update)
        self.state = InstallState.RESOLVED

        archive_path = self.acquire(descriptor, progress_callback, cancel_event)
        self.state = InstallState.ARTIFACT_READY

        target_dir = Path(self.config_manager.versions_dir) / install_dir_name(descriptor.version, descriptor.arch)
        target_dir.parent.mkdir(parents=True, exist_ok=True)
        self.extract(archive_path, target_dir, cancel_event)
        try:
            validate_goroot(target_dir)
        except InvalidInstallError:
            logger.error(f"解压结果不是完整的 Go 安装，删除 {target_dir}")
            shutil.rmtree(target_dir, ignore_errors=True)
            raise
        self.state = InstallState.EXTRACTED

        installed = self.registry.add_version(
            descriptor.version,
            descriptor.arch,
            str(target_dir),
            install_date=datetime.now().isoformat(timespec="seconds"),
        )
        self.state = InstallState.REGISTERED
        logger.info(f"成功安装 Go {descriptor.version} ({descriptor.arch}) 到 {target_dir}")
        return installed
