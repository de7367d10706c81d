"""Versioned schema migrations for the delivery log.

Storage engines are external; this module only sequences migrations and
tracks which versions are applied. A migration is a pair of async
callables (``up``/``down``) that receive the backend, so the same manager
drives an in-memory backend in tests and a real database elsewhere.

Example:
    ```python
    manager = MigrationManager(InMemoryMigrationBackend(), DEFAULT_MIGRATIONS)
    await manager.migrate()
    status = await manager.status()
    print(status.applied, status.pending)
    ```
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from hookrelay.exceptions import MigrationError

logger = logging.getLogger(__name__)

MigrationFn = Callable[[Any], Awaitable[None]]


@dataclass(frozen=True)
class Migration:
    """One schema change. Versions sort lexically ("001", "002", ...)."""

    version: str
    name: str
    up: MigrationFn
    down: MigrationFn


class MigrationStatus(BaseModel):
    model_config = ConfigDict(extra="forbid")

    applied: list[str] = Field(default_factory=list)
    pending: list[str] = Field(default_factory=list)


@runtime_checkable
class MigrationBackend(Protocol):
    """Where applied versions are recorded."""

    async def applied_versions(self) -> list[str]: ...

    async def record_applied(self, version: str, name: str) -> None: ...

    async def record_rolled_back(self, version: str) -> None: ...


class InMemoryMigrationBackend:
    """Migration backend holding collections and version rows in memory."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, Any]] = {}
        self._applied: dict[str, str] = {}

    async def applied_versions(self) -> list[str]:
        return sorted(self._applied)

    async def record_applied(self, version: str, name: str) -> None:
        self._applied[version] = name

    async def record_rolled_back(self, version: str) -> None:
        self._applied.pop(version, None)

    def create_collection(self, name: str) -> None:
        if name in self.collections:
            raise MigrationError(f"Collection already exists: {name}")
        self.collections[name] = {}

    def drop_collection(self, name: str) -> None:
        self.collections.pop(name, None)


class MigrationManager:
    """Applies and rolls back migrations in version order."""

    def __init__(self, backend: MigrationBackend, migrations: list[Migration]) -> None:
        versions = [m.version for m in migrations]
        if len(set(versions)) != len(versions):
            raise MigrationError(f"Duplicate migration versions: {versions}")
        self._backend = backend
        self._migrations = sorted(migrations, key=lambda m: m.version)
        self._by_version = {m.version: m for m in self._migrations}

    async def pending(self) -> list[Migration]:
        applied = set(await self._backend.applied_versions())
        return [m for m in self._migrations if m.version not in applied]

    async def migrate(self) -> list[str]:
        """Apply all pending migrations.

        Returns:
            Versions applied by this call, in order.

        Raises:
            MigrationError: If a migration fails. Earlier migrations from
                the same call stay applied; the failing one is not recorded.
        """
        pending = await self.pending()
        if not pending:
            logger.info("No pending migrations")
            return []

        applied: list[str] = []
        for migration in pending:
            try:
                await migration.up(self._backend)
            except Exception as e:
                raise MigrationError(
                    f"Failed to apply migration {migration.version} ({migration.name}): {e}"
                ) from e
            await self._backend.record_applied(migration.version, migration.name)
            applied.append(migration.version)
            logger.info("Applied migration %s (%s)", migration.version, migration.name)
        return applied

    async def rollback(self, target_version: str | None = None) -> list[str]:
        """Roll back migrations.

        Args:
            target_version: Roll back everything applied after this version.
                When None, only the most recent migration is rolled back.

        Returns:
            Versions rolled back, newest first.
        """
        applied = await self._backend.applied_versions()
        if not applied:
            logger.info("No migrations to roll back")
            return []

        if target_version is None:
            to_roll_back = [applied[-1]]
        else:
            to_roll_back = [v for v in reversed(applied) if v > target_version]

        rolled_back: list[str] = []
        for version in to_roll_back:
            migration = self._by_version.get(version)
            if migration is None:
                raise MigrationError(f"Migration {version} not found")
            try:
                await migration.down(self._backend)
            except Exception as e:
                raise MigrationError(
                    f"Failed to roll back migration {version} ({migration.name}): {e}"
                ) from e
            await self._backend.record_rolled_back(version)
            rolled_back.append(version)
            logger.info("Rolled back migration %s (%s)", version, migration.name)
        return rolled_back

    async def status(self) -> MigrationStatus:
        applied = await self._backend.applied_versions()
        pending = [m.version for m in await self.pending()]
        return MigrationStatus(applied=applied, pending=pending)


async def _create_delivery_tables(backend: Any) -> None:
    backend.create_collection("webhook_deliveries")
    backend.create_collection("delivery_attempts")


async def _drop_delivery_tables(backend: Any) -> None:
    backend.drop_collection("delivery_attempts")
    backend.drop_collection("webhook_deliveries")


async def _create_dead_letters(backend: Any) -> None:
    backend.create_collection("dead_letters")


async def _drop_dead_letters(backend: Any) -> None:
    backend.drop_collection("dead_letters")


DEFAULT_MIGRATIONS = [
    Migration("001", "initial_schema", _create_delivery_tables, _drop_delivery_tables),
    Migration("002", "add_dead_letter_queue", _create_dead_letters, _drop_dead_letters),
]
