"""Cached, read-mostly access to webhook and subscription configuration.

The provider reads the external config store through the ``ConfigStore``
protocol and serves lookups from an in-memory snapshot. A reload builds a
complete new snapshot and swaps it in one assignment, so readers see either
the old or the new configuration, never a mix.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from hookrelay.exceptions import StorageError, ValidationError
from hookrelay.filtering import matches_subscription

if TYPE_CHECKING:
    from hookrelay.models import ChainEvent, Subscription, WebhookConfig

logger = logging.getLogger(__name__)


@runtime_checkable
class ConfigStore(Protocol):
    """Source of webhook and subscription definitions."""

    async def list_webhooks(self) -> list[WebhookConfig]:
        """Return every webhook definition, active or not."""
        ...

    async def list_subscriptions(self) -> list[Subscription]:
        """Return every subscription, active or not."""
        ...


class InMemoryConfigStore:
    """ConfigStore kept in process memory, for tests and embedding."""

    def __init__(
        self,
        webhooks: list[WebhookConfig] | None = None,
        subscriptions: list[Subscription] | None = None,
    ) -> None:
        self._webhooks: dict[str, WebhookConfig] = {w.id: w for w in webhooks or []}
        self._subscriptions: dict[str, Subscription] = {s.id: s for s in subscriptions or []}

    def put_webhook(self, webhook: WebhookConfig) -> None:
        self._webhooks[webhook.id] = webhook

    def put_subscription(self, subscription: Subscription) -> None:
        self._subscriptions[subscription.id] = subscription

    def remove_webhook(self, webhook_id: str) -> bool:
        return self._webhooks.pop(webhook_id, None) is not None

    def remove_subscription(self, subscription_id: str) -> bool:
        return self._subscriptions.pop(subscription_id, None) is not None

    async def list_webhooks(self) -> list[WebhookConfig]:
        return list(self._webhooks.values())

    async def list_subscriptions(self) -> list[Subscription]:
        return list(self._subscriptions.values())


def _log_retry(retry_state: RetryCallState) -> None:
    """Log config store retry attempts with context."""
    logger.warning(
        "Retrying config store read",
        extra={
            "attempt": retry_state.attempt_number,
            "fn_name": retry_state.fn.__name__ if retry_state.fn else "unknown",
            "exception": str(retry_state.outcome.exception()) if retry_state.outcome else None,
        },
    )


# Store reads are retried on StorageError only; anything else is a bug
store_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.1, min=0.1, max=2),
    retry=retry_if_exception_type(StorageError),
    before_sleep=_log_retry,
    reraise=True,
)


@dataclass(frozen=True)
class ConfigSnapshot:
    """Immutable view of the configuration at one point in time."""

    webhooks: dict[str, WebhookConfig] = field(default_factory=dict)
    subscriptions: tuple[Subscription, ...] = ()
    loaded_at: datetime | None = None


class WebhookConfigProvider:
    """Serves webhook configs and subscription matches from a snapshot.

    Example:
        ```python
        provider = WebhookConfigProvider(store)
        await provider.load_webhook_configs()

        config = provider.get_webhook_config("whk_abc")
        for subscription in provider.matching_subscriptions(event):
            ...
        ```
    """

    def __init__(
        self,
        store: ConfigStore,
        default_timeout_ms: int | None = None,
        default_retry_attempts: int | None = None,
    ) -> None:
        """Initialize the provider.

        Args:
            store: Source of configs.
            default_timeout_ms: Applied to webhooks whose row omits a timeout.
            default_retry_attempts: Applied to webhooks whose row omits an
                attempt budget.
        """
        self._store = store
        self._defaults: dict[str, int] = {}
        if default_timeout_ms is not None:
            self._defaults["timeout_ms"] = default_timeout_ms
        if default_retry_attempts is not None:
            self._defaults["retry_attempts"] = default_retry_attempts
        self._snapshot = ConfigSnapshot()

    @property
    def loaded(self) -> bool:
        return self._snapshot.loaded_at is not None

    @store_retry
    async def _fetch(self) -> tuple[list[WebhookConfig], list[Subscription]]:
        try:
            webhooks = await self._store.list_webhooks()
            subscriptions = await self._store.list_subscriptions()
        except StorageError:
            raise
        except (OSError, TimeoutError) as e:
            raise StorageError(f"Config store unavailable: {e}") from e
        return webhooks, subscriptions

    def _apply_defaults(self, webhook: WebhookConfig) -> WebhookConfig:
        update = {
            name: value
            for name, value in self._defaults.items()
            if name not in webhook.model_fields_set
        }
        return webhook.model_copy(update=update) if update else webhook

    async def load_webhook_configs(self) -> None:
        """Load all configs from the store and replace the cache.

        Raises:
            StorageError: If the store still fails after retries.
        """
        webhooks, subscriptions = await self._fetch()
        snapshot = ConfigSnapshot(
            webhooks={w.id: self._apply_defaults(w) for w in webhooks},
            subscriptions=tuple(subscriptions),
            loaded_at=datetime.now(UTC),
        )
        self._snapshot = snapshot
        logger.info(
            "Loaded %d webhook configs and %d subscriptions",
            len(snapshot.webhooks),
            len(snapshot.subscriptions),
        )

    async def refresh_configs(self) -> bool:
        """Reload configs, keeping the last good snapshot on failure.

        Returns:
            True if the cache was replaced.
        """
        try:
            await self.load_webhook_configs()
        except StorageError as e:
            logger.error("Config refresh failed, keeping previous snapshot: %s", e)
            return False
        except Exception:
            logger.exception("Unexpected error during config refresh, keeping previous snapshot")
            return False
        return True

    @property
    def snapshot(self) -> ConfigSnapshot:
        """The configuration currently being served."""
        return self._snapshot

    def get_webhook_config(self, webhook_id: str) -> WebhookConfig | None:
        """Look up a webhook config. Inactive configs are returned as-is."""
        return self._snapshot.webhooks.get(webhook_id)

    def list_webhook_configs(self) -> list[WebhookConfig]:
        return list(self._snapshot.webhooks.values())

    def matching_subscriptions(
        self, event: ChainEvent, snapshot: ConfigSnapshot | None = None
    ) -> list[Subscription]:
        """Active subscriptions that route this event.

        A subscription with malformed filters is skipped and logged rather
        than failing the whole event.

        Args:
            event: Event to route.
            snapshot: Snapshot to match against. Defaults to the current one.
        """
        if snapshot is None:
            snapshot = self._snapshot
        matches: list[Subscription] = []
        for subscription in snapshot.subscriptions:
            try:
                if matches_subscription(event, subscription):
                    matches.append(subscription)
            except ValidationError as e:
                logger.warning("Skipping subscription %s: %s", subscription.id, e.message)
        return matches

    def cache_stats(self) -> dict[str, object]:
        snapshot = self._snapshot
        return {
            "size": len(snapshot.webhooks),
            "subscriptions": len(snapshot.subscriptions),
            "loaded_at": snapshot.loaded_at.isoformat() if snapshot.loaded_at else None,
        }
