"""Chain access — ledger-indexing service clients."""

from ephemeral_channel.chain.mempool.client import MempoolClient

__all__ = ["MempoolClient"]
