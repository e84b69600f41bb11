"""On-chain and market data readers."""
