"""hookrelay exception hierarchy.

All exceptions inherit from HookRelayError for easy catching.

Delivery problems (bad config, unknown format, transport failures) are not
raised past the webhook sender: they are converted into a failed
DeliveryResult. The exceptions below are used inside the sender and by
callers that work with components directly.
"""

from __future__ import annotations


class HookRelayError(Exception):
    """Base exception for all hookrelay errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code.
    """

    code: str = "hookrelay_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
            }
        }


class ValidationError(HookRelayError):
    """Invalid input provided.

    Attributes:
        field: The field that failed validation.
    """

    code: str = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "field": self.field,
                "message": self.message,
            }
        }


class NotFoundError(HookRelayError):
    """Resource not found.

    Attributes:
        resource_type: Type of resource (e.g., "webhook", "delivery").
        resource_id: ID of the missing resource.
    """

    code: str = "not_found"

    def __init__(self, resource_type: str, resource_id: str) -> None:
        self.resource_type = resource_type
        self.resource_id = resource_id
        super().__init__(f"{resource_type} not found: {resource_id}")

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "resource_type": self.resource_type,
                "resource_id": self.resource_id,
                "message": self.message,
            }
        }


class ConfigInvalidError(HookRelayError):
    """Webhook configuration is missing, inactive or malformed.

    Never retried: the same config would fail the same way.

    Attributes:
        errors: Individual validation messages.
    """

    code: str = "config_invalid"

    def __init__(self, errors: list[str]) -> None:
        self.errors = list(errors)
        super().__init__("Invalid webhook configuration: " + ", ".join(self.errors))

    def to_dict(self) -> dict[str, object]:
        """Convert exception to API-friendly dictionary."""
        return {
            "error": {
                "code": self.code,
                "errors": self.errors,
                "message": self.message,
            }
        }


class UnsupportedFormatError(HookRelayError):
    """Payload format name has no registered formatter.

    Attributes:
        format_name: The requested format.
    """

    code: str = "unsupported_format"

    def __init__(self, format_name: str, supported: list[str] | None = None) -> None:
        self.format_name = format_name
        message = f"Unsupported webhook format: {format_name}"
        if supported:
            message += f". Supported formats: {', '.join(supported)}"
        super().__init__(message)


class StorageError(HookRelayError):
    """Storage operation failed.

    Raised when a config store, attempt log or job store call fails.
    """

    code: str = "storage_error"


class ConfigurationError(HookRelayError):
    """Engine configuration error.

    Raised when required settings are missing or inconsistent.
    """

    code: str = "configuration_error"


class MigrationError(HookRelayError):
    """Schema migration failed or was requested against an unknown version."""

    code: str = "migration_error"


class DispatcherError(HookRelayError):
    """Dispatcher misuse, such as submitting work to a stopped dispatcher.

    These are programming errors and propagate to the caller.
    """

    code: str = "dispatcher_error"
