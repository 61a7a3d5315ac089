"""
TRAINMAN - Multi-Chain Orchestrator

"Down here, I'm God."

Controls passage between chains. Only one chain is ever on the platform:
its tokens and prices are cleared before the next train is let in.
"""

from .orchestrator import ChainSnapshot, MultiChainOrchestrator

__all__ = ["MultiChainOrchestrator", "ChainSnapshot"]
