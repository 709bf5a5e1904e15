"""
远程版本获取模块。

从 Go 官方下载站（或其镜像）的 JSON 接口获取可用发布版本列表。
"""

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

import requests

from goswitch.utils.logger import get_logger
from goswitch.utils.rate_limiter import RateLimiter
from goswitch.utils.retry import RetryHandler
from goswitch.core.config_manager import ConfigManager
from goswitch.core.interfaces import IReleaseProvider
from goswitch.core.models import ReleaseDescriptor
from goswitch.core.version_utils import normalize_arch, normalize_version

logger = get_logger()

RELEASE_QUERY = {"mode": "json", "include": "all"}
SHA256_PATTERN = re.compile(r'^[0-9a-f]{64}$')


class RemoteFetcherError(Exception):
    """远程获取错误异常。"""
    pass


class NetworkError(RemoteFetcherError):
    """网络错误异常。"""
    pass


class MirrorError(RemoteFetcherError):
    """镜像源错误异常。"""
    pass


class MirrorStatus:
    """
    镜像源状态跟踪类。

    记录镜像源的可用状态、失败时间和原因。
    """

    def __init__(self):
        self._status: dict[str, dict[str, Any]] = {}

    def record_success(self, mirror_url: str) -> None:
        self._status[mirror_url] = {
            "last_success": datetime.now(),
            "last_failure": None,
            "failure_reason": None,
            "consecutive_failures": 0
        }

    def record_failure(self, mirror_url: str, reason: str) -> None:
        current = self._status.get(mirror_url, {
            "last_success": None,
            "last_failure": None,
            "failure_reason": None,
            "consecutive_failures": 0
        })
        current["last_failure"] = datetime.now()
        current["failure_reason"] = reason
        current["consecutive_failures"] = current.get("consecutive_failures", 0) + 1
        self._status[mirror_url] = current

    def get_sorted_mirrors(self, mirror_list: List[str]) -> List[str]:
        """
        获取按优先级排序的镜像源列表。

        最近成功过的镜像源排在前面，其次按连续失败次数升序；
        同等条件下保持配置中的原始顺序。

        参数:
            mirror_list: 原始镜像源列表

        返回:
            排序后的镜像源列表
        """
        def get_priority(mirror_url: str) -> tuple:
            status = self._status.get(mirror_url, {})
            last_success = status.get("last_success")
            consecutive_failures = status.get("consecutive_failures", 0)

            if last_success is None:
                return (1, consecutive_failures, 0)

            return (0, consecutive_failures, -last_success.timestamp())

        return sorted(mirror_list, key=get_priority)

    def get_failure_summary(self) -> str:
        summaries = []
        for mirror_url, status in self._status.items():
            if status.get("last_failure"):
                summaries.append(
                    f"{mirror_url}: {status.get('failure_reason', '未知错误')} "
                    f"(连续失败 {status.get('consecutive_failures', 0)} 次)"
                )
        return "; ".join(summaries) if summaries else "无失败记录"


def parse_release_index(data: Any, mirror_url: str) -> List[ReleaseDescriptor]:
    """
    解析下载站 JSON 接口返回的发布列表。

    只保留 Windows 平台的 zip 压缩包，跳过 beta/rc 等预发布版本、
    不支持的架构以及缺少有效 SHA-256 的条目。下载地址由镜像地址与
    文件名拼接而成。

    参数:
        data: 反序列化后的 JSON 数据
        mirror_url: 数据来源的镜像地址

    返回:
        发布版本列表
    """
    if not isinstance(data, list):
        raise MirrorError(f"镜像源 {mirror_url} 返回的数据格式不支持: {type(data).__name__}")

    base_url = mirror_url if mirror_url.endswith("/") else mirror_url + "/"
    releases: Dict[tuple, ReleaseDescriptor] = {}
    skipped = 0

    for release in data:
        if not isinstance(release, dict):
            continue
        for item in release.get("files") or []:
            if not isinstance(item, dict):
                continue
            if item.get("os") != "windows" or item.get("kind") != "archive":
                continue
            filename = item.get("filename") or ""
            if not filename.endswith(".zip"):
                continue

            version = normalize_version(item.get("version") or release.get("version") or "")
            arch = normalize_arch(item.get("arch") or "")
            sha256 = str(item.get("sha256") or "").lower()
            if version is None or arch is None or not SHA256_PATTERN.match(sha256):
                skipped += 1
                continue

            descriptor = ReleaseDescriptor(
                version=version,
                arch=arch,
                os="windows",
                download_url=base_url + filename,
                sha256=sha256,
                size=int(item.get("size") or 0),
                kind="archive",
            )
            releases.setdefault((version, arch), descriptor)

    if skipped:
        logger.debug(f"镜像源 {mirror_url} 中有 {skipped} 个预发布或无效条目被跳过")
    return list(releases.values())


class GoReleaseFetcher(IReleaseProvider):
    """
    Go 发布版本获取器类。

    依次尝试配置中的镜像源，最近成功的优先；请求经过速率限制，
    临时性网络错误按指数退避重试。
    """

    def __init__(self, config_manager: ConfigManager, session: Optional[requests.Session] = None,
                 retry_handler: Optional[RetryHandler] = None):
        """
        初始化发布版本获取器。

        参数:
            config_manager: 配置管理器实例
            session: requests 会话，省略时新建
            retry_handler: 重试处理器，省略时按配置的重试次数创建
        """
        self.config_manager = config_manager
        self.session = session or requests.Session()
        self.rate_limiter = RateLimiter(requests_per_second=config_manager.get_request_rate_limit())
        self.retry_handler = retry_handler or RetryHandler(
            max_retries=config_manager.get_catalog_retry_count()
        )
        self.mirror_status = MirrorStatus()

    def fetch_releases(self) -> List[ReleaseDescriptor]:
        """
        从镜像源获取全部 Windows 发布版本。

        返回:
            发布版本列表

        抛出:
            RemoteFetcherError: 所有镜像源均失败
        """
        mirror_list = self.config_manager.get_mirror_list()
        if not mirror_list:
            raise MirrorError("未配置任何镜像源")

        for mirror_url in self.mirror_status.get_sorted_mirrors(mirror_list):
            try:
                logger.info(f"尝试从镜像源获取 Go 版本列表: {mirror_url}")
                data = self.retry_handler.execute(self._request_index, mirror_url)
                releases = parse_release_index(data, mirror_url)
            except (requests.exceptions.RequestException, ValueError, RemoteFetcherError) as e:
                logger.warning(f"从镜像源 {mirror_url} 获取版本列表失败: {e}")
                self.mirror_status.record_failure(mirror_url, str(e))
                continue

            if not releases:
                error_msg = "镜像源未返回任何 Windows 版本"
                logger.warning(f"从镜像源 {mirror_url} 获取版本列表失败: {error_msg}")
                self.mirror_status.record_failure(mirror_url, error_msg)
                continue

            self.mirror_status.record_success(mirror_url)
            logger.info(f"成功从镜像源 {mirror_url} 获取 {len(releases)} 个 Go 发布包")
            return releases

        failure_summary = self.mirror_status.get_failure_summary()
        logger.error(f"所有镜像源获取 Go 版本列表失败。失败详情: {failure_summary}")
        raise NetworkError(f"所有镜像源均不可用: {failure_summary}")

    def _request_index(self, mirror_url: str) -> Any:
        self.rate_limiter.acquire()
        logger.debug(f"请求版本索引: {mirror_url}")
        response = self.session.get(
            mirror_url,
            params=RELEASE_QUERY,
            timeout=self.config_manager.get_timeouts()[0],
        )
        response.raise_for_status()
        return response.json()
