"""PredFusion - cross-platform prediction market aggregation."""

__version__ = "0.1.0"
