from __future__ import annotations

from .local import LocalWalletSigner, TransactionRevertedError, local_sender_factory

__all__ = ["LocalWalletSigner", "TransactionRevertedError", "local_sender_factory"]
