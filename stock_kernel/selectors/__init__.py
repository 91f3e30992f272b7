"""Selectors for the stock kernel (read side)."""

from stock_kernel.selectors.movement_selector import LedgerTotal, MovementSelector

__all__ = ["LedgerTotal", "MovementSelector"]
