"""
速率限制器模块。

基于 Token Bucket 控制对镜像源的请求频率。
"""

import time
from typing import Callable, Optional


class RateLimiter:
    """
    速率限制器类。

    按固定速率生成 token，每次请求消耗一个 token，token 不足时阻塞等待。
    requests_per_second 为 0 或 None 时不做限制。
    """

    def __init__(
        self,
        requests_per_second: Optional[float] = None,
        max_tokens: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        初始化速率限制器。

        参数:
            requests_per_second: 每秒允许的请求数
            max_tokens: Token Bucket 的最大容量，默认为 requests_per_second
            clock: 时钟函数，测试时可替换
            sleep: 等待函数，测试时可替换
        """
        self._clock = clock
        self._sleep = sleep
        self.requests_per_second = requests_per_second if requests_per_second else None
        if self.requests_per_second is not None:
            self.max_tokens = float(max_tokens or self.requests_per_second)
            self.tokens = self.max_tokens
        else:
            self.max_tokens = 0.0
            self.tokens = 0.0
        self._last_refill = self._clock()

    @property
    def enabled(self) -> bool:
        return self.requests_per_second is not None

    def acquire(self) -> None:
        """
        获取请求权限，必要时等待。
        """
        if not self.enabled:
            return

        self._refill()
        while self.tokens < 1.0:
            self._sleep((1.0 - self.tokens) / self.requests_per_second)
            self._refill()
        self.tokens -= 1.0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill)
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.requests_per_second)
        self._last_refill = now

    def reset(self) -> None:
        """重置速率限制器状态。"""
        self.tokens = self.max_tokens
        self._last_refill = self._clock()
