"""
下载速度限制工具模块。
"""

import time
from typing import BinaryIO, Callable

from goswitch.utils.logger import get_logger

logger = get_logger()


class SpeedLimiter:
    """
    下载速度限制器类。

    按累计写入字节数与已用时间比较，写得太快时休眠补齐。
    """

    def __init__(
        self,
        speed_limit_bytes: int = 0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        初始化速度限制器。

        参数:
            speed_limit_bytes: 速度限制（字节/秒），0 表示不限速
            clock: 时钟函数
            sleep: 等待函数
        """
        self.speed_limit = max(0, int(speed_limit_bytes or 0))
        self._clock = clock
        self._sleep = sleep
        self._start = None
        self._written = 0

    def write_with_limit(self, f: BinaryIO, data: bytes) -> int:
        """
        写入数据并应用速度限制。

        参数:
            f: 文件对象
            data: 要写入的数据

        返回:
            实际写入的字节数
        """
        written = f.write(data)
        if self.speed_limit <= 0:
            return written

        if self._start is None:
            self._start = self._clock()
        self._written += written

        expected = self._written / self.speed_limit
        elapsed = self._clock() - self._start
        if elapsed < expected:
            self._sleep(expected - elapsed)
        return written
