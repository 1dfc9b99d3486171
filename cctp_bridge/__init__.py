"""Resumable cross-chain USDC bridging over Circle CCTP V2."""
__version__ = "1.0.0"
