"""
protocol - Lending pool access for KEEPER.
"""

from protocol.pool import AjnaPool, LendingPool

__all__ = ["AjnaPool", "LendingPool"]
