"""
GoSwitch - Windows 下的 Go 版本切换工具。
"""

__version__ = "0.1.0"
