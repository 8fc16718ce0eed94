"""
协作式取消

仿真在时间步之间、优化在DP行之间检查 CancellationToken；
被取消的运行返回 Cancelled，不返回部分结果。
"""

import threading
from dataclasses import dataclass
from typing import Optional


class CancellationToken:
    """线程安全的取消标志，可在其他线程中调用 cancel()"""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class Cancelled:
    """
    被取消运行的返回值

    Args:
        stage: 取消发生的阶段（"simulation" 或 "optimization"）
        index: 取消时已完成的步数/DP行数
    """

    stage: str
    index: int


def is_cancelled(token: Optional[CancellationToken]) -> bool:
    return token is not None and token.is_cancelled


__all__ = ['CancellationToken', 'Cancelled', 'is_cancelled']
