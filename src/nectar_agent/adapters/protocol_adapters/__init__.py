from __future__ import annotations

from ...clients.chain import ChainClient
from .aave import AaveAdapter
from .base import (
    BaseProtocolAdapter,
    Protocol,
    SendTx,
    TxRequest,
    UnsupportedAssetError,
)
from .lista import ListaAdapter
from .venus import VenusAdapter

PROTOCOL_ADAPTERS: dict[Protocol, type[BaseProtocolAdapter]] = {
    Protocol.VENUS: VenusAdapter,
    Protocol.AAVE: AaveAdapter,
    Protocol.LISTA: ListaAdapter,
}

KNOWN_PROTOCOLS: frozenset[str] = frozenset(p.value for p in Protocol)


def get_adapter_class(protocol: str | Protocol) -> type[BaseProtocolAdapter]:
    """Get adapter class by protocol.

    Args:
        protocol: Protocol enum member or its name (case-insensitive)

    Returns:
        Adapter class

    Raises:
        ValueError: If protocol is not recognized
    """
    key = protocol if isinstance(protocol, Protocol) else Protocol.parse(protocol)
    if key is None:
        raise ValueError(
            f"Unknown protocol '{protocol}'. "
            f"Available: {', '.join(p.value for p in PROTOCOL_ADAPTERS)}"
        )
    return PROTOCOL_ADAPTERS[key]


def build_protocol_adapters(chain: ChainClient) -> dict[Protocol, BaseProtocolAdapter]:
    """Instantiate one adapter per supported protocol."""
    return {protocol: cls(chain) for protocol, cls in PROTOCOL_ADAPTERS.items()}


__all__ = [
    "AaveAdapter",
    "BaseProtocolAdapter",
    "KNOWN_PROTOCOLS",
    "ListaAdapter",
    "PROTOCOL_ADAPTERS",
    "Protocol",
    "SendTx",
    "TxRequest",
    "UnsupportedAssetError",
    "VenusAdapter",
    "build_protocol_adapters",
    "get_adapter_class",
]
