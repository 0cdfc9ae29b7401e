"""SWIM membership building blocks: protocol formulas, round-trip tracking, scheduling, metrics and encrypted transports."""

__version__ = "0.1.0"