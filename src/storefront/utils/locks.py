"""Per-key mutual exclusion for request-scoped units of work.

Used to serialize all writes to one aggregate (one cart, one order) inside a
process while leaving unrelated keys free to proceed in parallel. A key's lock
exists only while some thread holds or waits for it.
"""

import threading
from contextlib import ExitStack, contextmanager


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self.users = 0


class KeyedLocks:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key):
        key = str(key)
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._entries[key]

    @contextmanager
    def hold_all(self, keys):
        """Hold several keys, always acquired in sorted order."""
        with ExitStack() as stack:
            for key in sorted({str(key) for key in keys}):
                stack.enter_context(self.hold(key))
            yield
