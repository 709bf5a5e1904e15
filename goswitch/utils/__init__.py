"""
GoSwitch 工具模块。

提供日志、权限检测、重试、限速和输入验证等工具功能。
"""

from .logger import get_logger, setup_logger
from .permission_manager import is_admin
from .retry import RetryHandler
from .speed_limiter import SpeedLimiter
from .rate_limiter import RateLimiter
from .input_validator import InputValidator, InputValidationError

__all__ = [
    "get_logger",
    "setup_logger",
    "is_admin",
    "RetryHandler",
    "SpeedLimiter",
    "RateLimiter",
    "InputValidator",
    "InputValidationError",
]
