"""
权限检测模块。

修改 HKLM 下的系统环境变量需要管理员权限。
"""

import ctypes
import sys


def is_admin() -> bool:
    """
    检测当前进程是否具有管理员权限。

    非 Windows 平台始终返回 False。

    返回:
        具有管理员权限返回 True，否则返回 False
    """
    if sys.platform != "win32":
        return False
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except (AttributeError, OSError):
        return False
