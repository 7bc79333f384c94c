"""Configuration for OTU ecology analyses."""

from .config import DEFAULT_CONFIG, Config, TieBreak, ZeroTotalPolicy

__all__ = [
    "Config",
    "DEFAULT_CONFIG",
    "TieBreak",
    "ZeroTotalPolicy",
]
