"""
Tenant authorization store.

In-memory mapping of guild id -> ordered list of service names that guild
may operate. This is the single source of truth for authorization
decisions and the only mutable state shared between command handlers.

Access is guarded by a reader/writer lock: any number of concurrent
readers, or one writer. Every operation is synchronous and completes
in O(length of one guild's list) or better.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional

logger = logging.getLogger("service_bot.store")


class ReadWriteLock:
    """
    Writer-preferring reader/writer lock built on a single condition.

    Readers share the lock. A writer waits for active readers to drain and
    blocks new readers from entering while it is waiting, so a steady
    stream of status queries cannot starve an add-service.
    """

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class TenantAuthorizationStore:
    """
    Guild id -> allowed service names.

    Insertion order of each guild's list is preserved. The store does not
    deduplicate; callers that care about duplicates check is_allowed first.

    Usage:
        store = TenantAuthorizationStore({42: ["nginx"]})
        store.add(42, "redis")
        store.is_allowed(42, "redis")  # True
    """

    def __init__(self, servers_services: Optional[Dict[int, List[str]]] = None):
        self._lock = ReadWriteLock()
        self._servers_services: Dict[int, List[str]] = {
            int(tenant_id): list(services)
            for tenant_id, services in (servers_services or {}).items()
        }
        self._version = 0

    def is_allowed(self, tenant_id: int, service: str) -> bool:
        """True iff the guild has an entry containing an exact match for service."""
        with self._lock.read_locked():
            services = self._servers_services.get(tenant_id)
            return services is not None and service in services

    def add(self, tenant_id: int, service: str) -> None:
        """Append service to the guild's list, creating the record if absent."""
        with self._lock.write_locked():
            self._servers_services.setdefault(tenant_id, []).append(service)
            self._version += 1
        logger.debug(f"Added {service!r} to guild {tenant_id}")

    @property
    def version(self) -> int:
        """Number of writes applied since the store was built."""
        with self._lock.read_locked():
            return self._version

    def services(self, tenant_id: int) -> List[str]:
        """Copy of one guild's service list (empty for unknown guilds)."""
        with self._lock.read_locked():
            return list(self._servers_services.get(tenant_id, ()))

    def snapshot(self) -> Dict[int, List[str]]:
        """Deep copy of the full store contents."""
        with self._lock.read_locked():
            return {
                tenant_id: list(services)
                for tenant_id, services in self._servers_services.items()
            }

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._servers_services)
