import itertools
import threading
from contextlib import contextmanager
from typing import Hashable


class KeyedLock:
    """Serializes work per key with a re-entrant lock.

    An entry lives only while some thread holds or waits on it, so ids that
    are looked up once and never again do not accumulate.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: dict[Hashable, list] = {}

    @contextmanager
    def __call__(self, key: Hashable):
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = [threading.RLock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class InMemoryStorage:
    """Process-local tables for accounts, tasks, withdrawals and completions.

    Rows are plain dicts; the stores hand out model copies so nothing outside
    them can write a stored balance.
    """

    def __init__(self):
        self.accounts: dict[int, dict] = {}
        self.tasks: dict[int, dict] = {}
        self.withdrawals: dict[int, dict] = {}
        self.withdrawals_by_account: dict[int, list[int]] = {}
        self.completions: dict[str, dict] = {}

        self.account_locks = KeyedLock()
        self.withdrawal_locks = KeyedLock()
        self.catalog_lock = threading.Lock()

        self._withdrawal_ids = itertools.count(1)
        self._id_lock = threading.Lock()

    def next_withdrawal_id(self) -> int:
        with self._id_lock:
            return next(self._withdrawal_ids)
