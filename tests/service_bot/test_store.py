"""
Tests for the tenant authorization store and its reader/writer lock.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.service_bot.store import ReadWriteLock, TenantAuthorizationStore

GUILD_ID = 42


class TestIsAllowed:
    """Test allow-list lookups."""

    def test_unknown_guild_is_not_allowed(self):
        """Unknown guild means no services, not an error."""
        store = TenantAuthorizationStore()
        assert store.is_allowed(GUILD_ID, "nginx") is False

    def test_service_never_added_is_not_allowed(self, store):
        """Services absent from the guild's list are rejected."""
        assert store.is_allowed(GUILD_ID, "postgres") is False

    def test_match_is_case_sensitive(self, store):
        """Only exact matches count."""
        assert store.is_allowed(GUILD_ID, "nginx") is True
        assert store.is_allowed(GUILD_ID, "NGINX") is False
        assert store.is_allowed(GUILD_ID, "nginx ") is False

    def test_guilds_are_isolated(self, store):
        """One guild's services are not visible to another guild."""
        assert store.is_allowed(7, "nginx") is False


class TestAdd:
    """Test appending to allow-lists."""

    def test_add_then_allowed(self):
        """A service is allowed right after it is added."""
        store = TenantAuthorizationStore()
        store.add(GUILD_ID, "redis")
        assert store.is_allowed(GUILD_ID, "redis") is True

    def test_add_preserves_insertion_order(self, store):
        """New services go to the end of the list."""
        store.add(GUILD_ID, "postgres")
        assert store.services(GUILD_ID) == ["nginx", "redis", "postgres"]

    def test_add_does_not_deduplicate(self, store):
        """The store itself keeps duplicates."""
        store.add(GUILD_ID, "nginx")
        assert store.services(GUILD_ID) == ["nginx", "redis", "nginx"]

    def test_add_creates_guild_record(self, store):
        """Adding to a new guild creates its record."""
        store.add(99, "sshd")
        assert store.snapshot()[99] == ["sshd"]


class TestVersion:
    """Test the write counter used to skip redundant saves."""

    def test_new_store_is_at_zero(self, store):
        """Loaded contents do not count as writes."""
        assert store.version == 0

    def test_each_add_bumps_version(self, store):
        store.add(GUILD_ID, "postgres")
        store.add(7, "sshd")
        assert store.version == 2

    def test_reads_do_not_bump_version(self, store):
        store.is_allowed(GUILD_ID, "nginx")
        store.snapshot()
        store.services(GUILD_ID)
        assert store.version == 0


class TestSnapshot:
    """Test copies handed out by the store."""

    def test_snapshot_is_a_copy(self, store):
        """Mutating a snapshot does not touch the store."""
        snapshot = store.snapshot()
        snapshot[GUILD_ID].append("postgres")
        snapshot[7] = ["sshd"]
        assert store.snapshot() == {GUILD_ID: ["nginx", "redis"]}

    def test_services_of_unknown_guild(self, store):
        """Unknown guild yields an empty list."""
        assert store.services(7) == []

    def test_services_is_a_copy(self, store):
        """Mutating the returned list does not touch the store."""
        services = store.services(GUILD_ID)
        services.clear()
        assert store.services(GUILD_ID) == ["nginx", "redis"]

    def test_constructor_copies_input(self):
        """The store does not alias the mapping it was built from."""
        source = {GUILD_ID: ["nginx"]}
        store = TenantAuthorizationStore(source)
        source[GUILD_ID].append("redis")
        assert store.services(GUILD_ID) == ["nginx"]

    def test_len_counts_guilds(self, store):
        assert len(store) == 1


class TestConcurrency:
    """Test the store under concurrent access."""

    def test_concurrent_adds_lose_nothing(self):
        """Appends from many threads all land."""
        store = TenantAuthorizationStore()

        def add_many(worker: int):
            for i in range(100):
                store.add(GUILD_ID, f"svc-{worker}-{i}")

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(add_many, range(8)))

        services = store.services(GUILD_ID)
        assert len(services) == 800
        assert len(set(services)) == 800

    def test_readers_see_whole_records(self):
        """A reader never observes a half-built record."""
        store = TenantAuthorizationStore()
        stop = threading.Event()
        torn = []

        def reader():
            while not stop.is_set():
                for services in store.snapshot().values():
                    if any(not isinstance(service, str) for service in services):
                        torn.append(services)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for thread in threads:
            thread.start()
        for i in range(500):
            store.add(i % 10, f"svc-{i}")
        stop.set()
        for thread in threads:
            thread.join(timeout=5)

        assert torn == []
        assert sum(len(services) for services in store.snapshot().values()) == 500


class TestReadWriteLock:
    """Test reader/writer exclusion."""

    def test_readers_share_the_lock(self):
        """A second reader gets in while the first still holds the lock."""
        lock = ReadWriteLock()
        second_reader_in = threading.Event()

        def second_reader():
            with lock.read_locked():
                second_reader_in.set()

        with lock.read_locked():
            thread = threading.Thread(target=second_reader)
            thread.start()
            assert second_reader_in.wait(timeout=2)
        thread.join(timeout=2)

    def test_writer_waits_for_reader(self):
        """A writer only proceeds once active readers have left."""
        lock = ReadWriteLock()
        writer_in = threading.Event()

        def writer():
            with lock.write_locked():
                writer_in.set()

        with lock.read_locked():
            thread = threading.Thread(target=writer)
            thread.start()
            assert not writer_in.wait(timeout=0.2)

        assert writer_in.wait(timeout=2)
        thread.join(timeout=2)

    def test_writer_excludes_readers(self):
        """Readers wait while a writer holds the lock."""
        lock = ReadWriteLock()
        reader_in = threading.Event()

        def reader():
            with lock.read_locked():
                reader_in.set()

        with lock.write_locked():
            thread = threading.Thread(target=reader)
            thread.start()
            assert not reader_in.wait(timeout=0.2)

        assert reader_in.wait(timeout=2)
        thread.join(timeout=2)

    def test_lock_released_on_exception(self):
        """An exception inside a locked block does not leave the lock held."""
        lock = ReadWriteLock()

        with pytest.raises(RuntimeError):
            with lock.write_locked():
                raise RuntimeError("boom")

        with lock.write_locked():
            pass
