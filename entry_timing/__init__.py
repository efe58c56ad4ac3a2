"""Entry-timing label synthesis, segmented models, and walk-forward backtests."""

__version__ = "0.1.0"
