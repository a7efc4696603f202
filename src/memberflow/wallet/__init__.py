"""Member wallet service."""

from memberflow.wallet.service import WalletService

__all__ = ["WalletService"]
