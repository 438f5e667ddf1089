"""Core building blocks for the PropEdge pipeline.

This package contains pure, side-effect-free modules:

- ``errors``     : error taxonomy shared by every component
- ``stat_config``: stat registry, thresholds, risk tiers and alias tables
- ``stats_math`` : medians, weighted medians, volatility, hit rates
- ``records``    : canonical dataclasses passed between components

Nothing in this package imports from ``propedge.services`` or ``propedge.models``.
"""
