"""USDC settlement and reconciliation for custodial wallets."""

__version__ = "0.1.0"
