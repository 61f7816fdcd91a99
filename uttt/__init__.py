"""Ultimate Tic Tac Toe: rules engine, computer opponent and two-peer online sync."""

__version__ = "1.0.0"
