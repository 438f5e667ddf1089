"""PropEdge: player-prop edge computation, parlay assembly and outcome reconciliation."""

__version__ = "1.0.0"
