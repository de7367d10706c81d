"""Orchestrates a single webhook delivery attempt.

The sender resolves and validates the webhook config, formats the payload,
consults the webhook's circuit breaker, and makes one HTTP call. Every
problem on that path ends up as a failed DeliveryResult; nothing is raised
to the dispatcher for config, format or transport errors.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field

from hookrelay.exceptions import ConfigInvalidError, UnsupportedFormatError
from hookrelay.formatting import FormatterRegistry, default_registry, render_body
from hookrelay.models import DeliveryResult, FailureClass

if TYPE_CHECKING:
    from hookrelay.models import WebhookConfig, WebhookDelivery
    from hookrelay.storage.config_provider import WebhookConfigProvider

    from .circuit_breaker import CircuitBreakerRegistry
    from .http_client import HttpClient

logger = logging.getLogger(__name__)

MAX_TIMEOUT_MS = 300000
MAX_RETRY_ATTEMPTS = 10

DELIVERY_ID_HEADER = "X-Hookrelay-Delivery-Id"
ATTEMPT_HEADER = "X-Hookrelay-Attempt"


class FieldError(BaseModel):
    """One problem with a webhook config field."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    field: str
    message: str
    value: Any = None


class ValidationResult(BaseModel):
    """Outcome of validating a webhook config."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    errors: list[FieldError] = Field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def messages(self, exclude: set[str] | None = None) -> list[str]:
        exclude = exclude or set()
        return [e.message for e in self.errors if e.field not in exclude]


class WebhookSender:
    """Performs one delivery attempt per ``send_webhook`` call.

    Example:
        ```python
        sender = WebhookSender(HttpClient(), config_provider=provider)
        result = await sender.send_webhook(delivery)
        if not result.success:
            print(result.failure_class, result.error)
        ```
    """

    def __init__(
        self,
        http_client: HttpClient,
        config_provider: WebhookConfigProvider | None = None,
        formatters: FormatterRegistry | None = None,
        circuit_breakers: CircuitBreakerRegistry | None = None,
    ) -> None:
        """Initialize the sender.

        Args:
            http_client: Client used for the outbound POST.
            config_provider: Resolves webhook configs when none is passed.
            formatters: Payload formatter registry (built-ins by default).
            circuit_breakers: Per-webhook breakers; None disables them.
        """
        self._http = http_client
        self._configs = config_provider
        self._formatters = formatters or default_registry
        self._breakers = circuit_breakers

    def validate_webhook_config(self, config: WebhookConfig) -> ValidationResult:
        """Check a webhook config against delivery constraints."""
        errors: list[FieldError] = []

        if not config.url:
            errors.append(FieldError(field="url", message="URL is required", value=config.url))
        else:
            parsed = urlparse(config.url)
            if not parsed.scheme or not parsed.netloc:
                errors.append(
                    FieldError(field="url", message="Invalid URL format", value=config.url)
                )
            elif parsed.scheme not in ("http", "https"):
                errors.append(
                    FieldError(
                        field="url",
                        message="URL must use HTTP or HTTPS protocol",
                        value=config.url,
                    )
                )

        if not self._formatters.supports(config.format):
            supported = ", ".join(self._formatters.supported_formats())
            errors.append(
                FieldError(
                    field="format",
                    message=f"Format must be one of: {supported}",
                    value=config.format,
                )
            )

        if config.timeout_ms <= 0:
            errors.append(
                FieldError(
                    field="timeout_ms",
                    message="Timeout must be a positive number",
                    value=config.timeout_ms,
                )
            )
        elif config.timeout_ms > MAX_TIMEOUT_MS:
            errors.append(
                FieldError(
                    field="timeout_ms",
                    message=f"Timeout cannot exceed {MAX_TIMEOUT_MS}ms (5 minutes)",
                    value=config.timeout_ms,
                )
            )

        if config.retry_attempts < 0:
            errors.append(
                FieldError(
                    field="retry_attempts",
                    message="Retry attempts must be a non-negative number",
                    value=config.retry_attempts,
                )
            )
        elif config.retry_attempts > MAX_RETRY_ATTEMPTS:
            errors.append(
                FieldError(
                    field="retry_attempts",
                    message=f"Retry attempts cannot exceed {MAX_RETRY_ATTEMPTS}",
                    value=config.retry_attempts,
                )
            )

        for name in config.headers:
            if not name.strip():
                errors.append(
                    FieldError(
                        field="headers",
                        message="Header names must be non-empty strings",
                        value=name,
                    )
                )

        return ValidationResult(errors=errors)

    def _resolve_config(
        self, delivery: WebhookDelivery, config: WebhookConfig | None
    ) -> WebhookConfig:
        if config is None and self._configs is not None:
            config = self._configs.get_webhook_config(delivery.webhook_id)
        if config is None:
            raise ConfigInvalidError(
                [f"Webhook configuration not found for ID: {delivery.webhook_id}"]
            )
        if not config.active:
            raise ConfigInvalidError([f"Webhook {config.id} is inactive"])

        validation = self.validate_webhook_config(config)
        # Format problems are reported separately as unsupported_format
        problems = validation.messages(exclude={"format"})
        if problems:
            raise ConfigInvalidError(problems)
        return config

    def build_headers(
        self, config: WebhookConfig, delivery: WebhookDelivery
    ) -> dict[str, str]:
        """Default headers, overridden by the webhook's own headers."""
        headers = {
            "Content-Type": "application/json",
            DELIVERY_ID_HEADER: delivery.id,
            ATTEMPT_HEADER: str(max(1, delivery.attempts)),
        }
        headers.update(config.headers)
        return headers

    async def send_webhook(
        self,
        delivery: WebhookDelivery,
        config: WebhookConfig | None = None,
    ) -> DeliveryResult:
        """Make one delivery attempt.

        Args:
            delivery: The delivery being attempted. ``payload`` is updated
                with the formatted payload for inspection.
            config: Webhook config; looked up by ``delivery.webhook_id`` when
                omitted.

        Returns:
            The attempt's result. Failures carry a ``failure_class``.
        """
        try:
            resolved = self._resolve_config(delivery, config)
        except ConfigInvalidError as e:
            logger.warning("Webhook %s config invalid: %s", delivery.webhook_id, e.message)
            return DeliveryResult.failure(FailureClass.CONFIG_INVALID, e.message)

        try:
            payload = self._formatters.format(resolved.format, delivery.event)
        except UnsupportedFormatError as e:
            logger.warning("Webhook %s: %s", resolved.id, e.message)
            return DeliveryResult.failure(FailureClass.UNSUPPORTED_FORMAT, e.message)

        breaker = self._breakers.get(resolved.id) if self._breakers is not None else None
        if breaker is not None and not breaker.can_execute():
            stats = breaker.stats()
            return DeliveryResult.failure(
                FailureClass.CIRCUIT_OPEN,
                f"Circuit breaker is {stats.state.value} for webhook {resolved.id}",
            )

        delivery.payload = payload
        result = await self._http.post(
            resolved.url,
            render_body(payload),
            self.build_headers(resolved, delivery),
            resolved.timeout_ms,
        )

        if breaker is not None:
            if result.success:
                breaker.record_success()
            else:
                breaker.record_failure()

        if result.success:
            logger.debug(
                "Webhook %s delivered in %.1fms (status %s)",
                resolved.id,
                result.latency_ms,
                result.status_code,
            )
        else:
            logger.info("Webhook %s attempt failed: %s", resolved.id, result.error)
        return result
