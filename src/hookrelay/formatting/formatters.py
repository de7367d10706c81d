"""Built-in payload formatters for common automation platforms."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from .base import PayloadFormatter, flatten, format_timestamp, to_snake_case

if TYPE_CHECKING:
    from hookrelay.models import ChainEvent


class GenericFormatter(PayloadFormatter):
    """Plain JSON mirroring the event structure."""

    name = "generic"

    def format_payload(self, event: ChainEvent) -> dict[str, Any]:
        return {
            "contractAddress": event.contract_address,
            "eventName": event.event_name,
            "blockNumber": event.block_number,
            "transactionHash": event.transaction_hash,
            "logIndex": event.log_index,
            "args": dict(event.args),
            "timestamp": format_timestamp(event.timestamp),
        }


class ZapierFormatter(PayloadFormatter):
    """Flat snake_case fields; arguments flattened and prefixed with ``arg_``.

    Zapier maps top-level fields only, so nested arguments such as
    ``{"order": {"amountIn": 5}}`` become ``arg_order_amount_in``.
    """

    name = "zapier"

    def format_payload(self, event: ChainEvent) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event_name": event.event_name,
            "contract_address": event.contract_address,
            "block_number": event.block_number,
            "transaction_hash": event.transaction_hash,
            "log_index": event.log_index,
            "timestamp": format_timestamp(event.timestamp),
        }
        for key, value in flatten(event.args).items():
            payload[f"arg_{to_snake_case(key)}"] = value
        return payload


class MakeFormatter(PayloadFormatter):
    """Make.com scenario shape: ``metadata`` plus ``data``."""

    name = "make"

    def format_payload(self, event: ChainEvent) -> dict[str, Any]:
        return {
            "metadata": {
                "eventName": event.event_name,
                "contractAddress": event.contract_address,
                "blockNumber": event.block_number,
                "transactionHash": event.transaction_hash,
                "logIndex": event.log_index,
                "timestamp": format_timestamp(event.timestamp),
            },
            "data": dict(event.args),
        }


class N8nFormatter(PayloadFormatter):
    """n8n workflow shape: a single ``eventData`` object."""

    name = "n8n"

    def format_payload(self, event: ChainEvent) -> dict[str, Any]:
        return {
            "eventData": {
                "name": event.event_name,
                "contractAddress": event.contract_address,
                "blockNumber": event.block_number,
                "transactionHash": event.transaction_hash,
                "logIndex": event.log_index,
                "timestamp": format_timestamp(event.timestamp),
                "parameters": dict(event.args),
            }
        }
