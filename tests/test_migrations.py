"""Tests for delivery log schema migrations."""

import pytest

from hookrelay.exceptions import MigrationError
from hookrelay.storage import (
    DEFAULT_MIGRATIONS,
    InMemoryMigrationBackend,
    Migration,
    MigrationBackend,
    MigrationManager,
)


async def _noop(backend) -> None:
    return None


async def _explode(backend) -> None:
    raise RuntimeError("disk full")


class TestMigrationManager:
    """Tests for MigrationManager with the default migrations."""

    def setup_method(self):
        self.backend = InMemoryMigrationBackend()
        self.manager = MigrationManager(self.backend, DEFAULT_MIGRATIONS)

    def test_backend_protocol(self):
        assert isinstance(self.backend, MigrationBackend)

    @pytest.mark.asyncio
    async def test_migrate_applies_all(self):
        applied = await self.manager.migrate()

        assert applied == ["001", "002"]
        assert set(self.backend.collections) == {
            "webhook_deliveries",
            "delivery_attempts",
            "dead_letters",
        }
        status = await self.manager.status()
        assert status.applied == ["001", "002"]
        assert status.pending == []

    @pytest.mark.asyncio
    async def test_migrate_is_idempotent(self):
        await self.manager.migrate()
        assert await self.manager.migrate() == []

    @pytest.mark.asyncio
    async def test_rollback_last(self):
        """Without a target only the newest migration is undone."""
        await self.manager.migrate()

        assert await self.manager.rollback() == ["002"]
        assert "dead_letters" not in self.backend.collections
        assert (await self.manager.status()).pending == ["002"]

    @pytest.mark.asyncio
    async def test_rollback_to_target(self):
        """Everything after the target is undone, newest first."""
        await self.manager.migrate()

        assert await self.manager.rollback("000") == ["002", "001"]
        assert self.backend.collections == {}

    @pytest.mark.asyncio
    async def test_rollback_with_nothing_applied(self):
        assert await self.manager.rollback() == []


class TestMigrationFailures:
    """Tests for failing and malformed migrations."""

    def test_duplicate_versions_rejected(self):
        migrations = [
            Migration("001", "a", _noop, _noop),
            Migration("001", "b", _noop, _noop),
        ]
        with pytest.raises(MigrationError):
            MigrationManager(InMemoryMigrationBackend(), migrations)

    @pytest.mark.asyncio
    async def test_failed_migration_not_recorded(self):
        """Earlier migrations stay applied; the failing one stays pending."""
        migrations = [
            Migration("001", "ok", _noop, _noop),
            Migration("002", "broken", _explode, _noop),
        ]
        manager = MigrationManager(InMemoryMigrationBackend(), migrations)

        with pytest.raises(MigrationError, match="002"):
            await manager.migrate()

        status = await manager.status()
        assert status.applied == ["001"]
        assert status.pending == ["002"]

    @pytest.mark.asyncio
    async def test_unknown_applied_version(self):
        """Rolling back a version with no migration definition fails."""
        backend = InMemoryMigrationBackend()
        await backend.record_applied("099", "ghost")
        manager = MigrationManager(backend, DEFAULT_MIGRATIONS)

        with pytest.raises(MigrationError, match="099"):
            await manager.rollback()

    @pytest.mark.asyncio
    async def test_existing_collection_fails_migration(self):
        backend = InMemoryMigrationBackend()
        backend.create_collection("webhook_deliveries")
        manager = MigrationManager(backend, DEFAULT_MIGRATIONS)

        with pytest.raises(MigrationError, match="initial_schema"):
            await manager.migrate()
