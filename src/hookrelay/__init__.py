"""hookrelay: reliable webhook delivery for blockchain events.

Matches contract events against webhook subscriptions, formats a payload
per destination, and delivers it with bounded concurrency, backoff retries,
deduplication and per-webhook statistics.

Quick Start:
    from hookrelay import ChainEvent, Dispatcher, Subscription, WebhookConfig
    from hookrelay.storage import InMemoryConfigStore

    webhook = WebhookConfig(id="whk_1", url="https://hooks.example.com/in")
    store = InMemoryConfigStore(
        webhooks=[webhook],
        subscriptions=[Subscription(event_names=["Transfer"], webhook_ids=["whk_1"])],
    )

    async with Dispatcher.from_settings(config_store=store) as dispatcher:
        for delivery_id in await dispatcher.on_event(event):
            delivery = await dispatcher.wait_for(delivery_id)
            print(delivery.status, delivery.attempts)

Payload formats:
    - generic: camelCase event fields plus raw args
    - zapier: flat snake_case fields, args prefixed with ``arg_``
    - make: ``metadata`` and ``data`` sections
    - n8n: ``eventData`` with ``parameters``
"""

__version__ = "0.1.0"

# Configuration
from .config import RetrySettings, Settings, settings

# Exceptions
from .exceptions import (
    ConfigInvalidError,
    ConfigurationError,
    DispatcherError,
    HookRelayError,
    MigrationError,
    NotFoundError,
    StorageError,
    UnsupportedFormatError,
    ValidationError,
)

# Logging
from .logging import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
    unbind_context,
)

# Models
from .models import (
    AttemptRecord,
    ChainEvent,
    DeliveryResult,
    DeliveryStats,
    DeliveryStatus,
    FailureClass,
    Subscription,
    WebhookConfig,
    WebhookDelivery,
    WebhookFormat,
)

# Engine
from .webhooks import Dispatcher, HttpClient, RetryPolicy, RetryScheduler, WebhookSender

__all__ = [
    # Version
    "__version__",
    # Configuration
    "RetrySettings",
    "Settings",
    "settings",
    # Exceptions
    "HookRelayError",
    "ValidationError",
    "NotFoundError",
    "ConfigInvalidError",
    "UnsupportedFormatError",
    "StorageError",
    "ConfigurationError",
    "MigrationError",
    "DispatcherError",
    # Logging
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
    "unbind_context",
    # Models
    "ChainEvent",
    "WebhookConfig",
    "WebhookFormat",
    "Subscription",
    "WebhookDelivery",
    "DeliveryResult",
    "DeliveryStatus",
    "FailureClass",
    "AttemptRecord",
    "DeliveryStats",
    # Engine
    "Dispatcher",
    "HttpClient",
    "RetryPolicy",
    "RetryScheduler",
    "WebhookSender",
]
