# forge_engine/counter.py
"""
Tool-call counter shared by every step of one pipeline run.

One instance is created per run and injected through the StepContext, so
parallel members bump the same counter and separate runs never share one.
Increments are lock-protected to stay correct when shims run in threads.
"""
import threading


class ToolCallCounter:
    """Monotonic, thread-safe invocation counter."""

    __slots__ = ("_value", "_lock")

    def __init__(self, start: int = 0):
        if start < 0:
            raise ValueError(f"Counter start must be >= 0, got {start}")
        self._value = start
        self._lock = threading.Lock()

    def increment(self, amount: int = 1) -> int:
        """Add ``amount`` and return the new total."""
        if amount < 0:
            raise ValueError("ToolCallCounter is monotonic")
        with self._lock:
            self._value += amount
            return self._value

    @property
    def value(self) -> int:
        with self._lock:
            return self._value

    def __int__(self) -> int:
        return self.value

    def __repr__(self) -> str:
        return f"ToolCallCounter({self.value})"
