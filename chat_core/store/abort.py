"""进行中操作的取消句柄。"""

import threading
from typing import Protocol


class AbortHandle(Protocol):
    """任何带 abort() 的对象都可以作为取消句柄。"""

    def abort(self) -> None:
        ...


class AbortController:
    """基于 threading.Event 的取消句柄。

    abort() 只置位事件、立即返回；流式生成方自行轮询 aborted 或 wait()。
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def abort(self) -> None:
        self._event.set()

    @property
    def aborted(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)
