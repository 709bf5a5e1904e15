"""
输入验证模块。

提供命令行与配置输入的验证和 sanitization 功能。
"""

import re


class InputValidationError(Exception):
    """输入验证错误异常。"""
    pass


class InputValidator:
    """
    输入验证器类。

    提供版本号、架构和镜像 URL 的验证功能。
    """

    MAX_VERSION_LENGTH = 32
    URL_PATTERN = re.compile(
        r'^https?://'
        r'(?:(?:[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?\.)+)'
        r'(?:[A-Z]{2,63}|[A-Z0-9-]{2,})'
        r'(?::\d+)?'
        r'(?:/?|[/?]\S+)$',
        re.IGNORECASE
    )

    @classmethod
    def validate_version_string(cls, version: str) -> str:
        """
        验证版本号字符串的有效性。

        参数:
            version: 版本号字符串，允许 "v"/"go" 前缀

        返回:
            规范化后的版本号

        抛出:
            InputValidationError: 版本号为空或不是 2~3 段数字
        """
        from goswitch.core.version_utils import normalize_version

        if not version or not version.strip():
            raise InputValidationError("版本号不能为空")

        if len(version.strip()) > cls.MAX_VERSION_LENGTH:
            raise InputValidationError(f"版本号不能超过 {cls.MAX_VERSION_LENGTH} 个字符")

        normalized = normalize_version(version)
        if normalized is None:
            raise InputValidationError(f"版本号格式无效: {version}（应为 1.21 或 1.21.0 形式）")
        return normalized

    @classmethod
    def validate_arch(cls, arch: str) -> str:
        """
        验证并标准化架构名称。

        参数:
            arch: 架构名称

        返回:
            规范架构名

        抛出:
            InputValidationError: 架构不受支持
        """
        from goswitch.core.version_utils import SUPPORTED_ARCHS, normalize_arch

        canonical = normalize_arch(arch)
        if canonical is None:
            raise InputValidationError(
                f"不支持的架构: {arch}（可选: {', '.join(SUPPORTED_ARCHS)}）"
            )
        return canonical

    @classmethod
    def validate_url(cls, url: str) -> bool:
        """
        验证 URL 的有效性。

        参数:
            url: URL 字符串

        返回:
            验证通过返回 True，否则抛出 InputValidationError
        """
        if not url or not cls.URL_PATTERN.match(url.strip()):
            raise InputValidationError(f"URL 格式无效: {url}")
        return True
