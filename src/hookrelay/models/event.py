"""Blockchain event model consumed by the dispatcher."""

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChainEvent(BaseModel):
    """A decoded contract event emitted by the event source.

    Immutable once emitted. ``(transaction_hash, log_index)`` uniquely
    identifies the on-chain occurrence.

    Attributes:
        contract_address: Address of the emitting contract.
        event_name: Decoded event name (e.g., "Transfer").
        block_number: Block containing the transaction.
        transaction_hash: Hash of the transaction that emitted the log.
        log_index: Position of the log within the block.
        args: Decoded event arguments.
        timestamp: Block timestamp.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    contract_address: str = Field(min_length=1, description="Emitting contract address")
    event_name: str = Field(min_length=1, description="Decoded event name")
    block_number: int = Field(ge=0, description="Block number")
    transaction_hash: str = Field(min_length=1, description="Transaction hash")
    log_index: int = Field(ge=0, description="Log index within the block")
    args: dict[str, Any] = Field(default_factory=dict, description="Decoded event arguments")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(UTC),
        description="Block timestamp",
    )

    @field_validator("timestamp")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        # Naive timestamps from the source are UTC
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def key(self) -> tuple[str, int]:
        """Identity of the on-chain occurrence."""
        return (self.transaction_hash.lower(), self.log_index)


__all__ = ["ChainEvent"]
