"""Cryptotrend trading cycle."""

from .cycle import CycleResult, TradingCycle

__all__ = ["CycleResult", "TradingCycle"]
