"""Core mathematics and configuration for the consensus edge engine.

This package contains pure, market-agnostic building blocks:

- ``odds_math``      — probability/odds conversion, edge, risk tiering
- ``kelly``          — Kelly criterion sizing with half-Kelly stake cap
- ``scoring_policy`` — every threshold and default constant in one place
- ``penalty``        — pluggable correlation-penalty strategies

Nothing in this package imports from ``edge_engine.services`` or
``edge_engine.models``.  All modules are side-effect-free and unit-testable
in isolation.
"""
