import threading
from typing import Callable, Hashable, TypeVar


T = TypeVar("T")


class DerivedViewCache:
    """Read-through cache of derived views (reports, budget status, dashboard).

    Entries are grouped per owner so that any ledger mutation can drop every
    view of that owner at once. Each owner also has a generation number that
    ``invalidate`` bumps; a value computed while the generation moved on is
    returned to its caller but never stored.
    """

    def __init__(self) -> None:
        self._entries: dict[int, dict[Hashable, object]] = {}
        self._generations: dict[int, int] = {}
        self._lock = threading.Lock()

    def get_or_compute(
        self, owner_id: int, key: Hashable, compute: Callable[[], T]
    ) -> T:
        with self._lock:
            owner_entries = self._entries.get(owner_id)
            if owner_entries is not None and key in owner_entries:
                return owner_entries[key]  # type: ignore[return-value]
            generation = self._generations.get(owner_id, 0)
        value = compute()
        with self._lock:
            if self._generations.get(owner_id, 0) == generation:
                self._entries.setdefault(owner_id, {})[key] = value
        return value

    def invalidate(self, owner_id: int) -> None:
        with self._lock:
            self._entries.pop(owner_id, None)
            self._generations[owner_id] = self._generations.get(owner_id, 0) + 1

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._generations.clear()

    def __contains__(self, item: tuple[int, Hashable]) -> bool:
        owner_id, key = item
        with self._lock:
            return key in self._entries.get(owner_id, {})


derived_views = DerivedViewCache()
