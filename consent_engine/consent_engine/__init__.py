"""ConsentIQ consent verification and retention engine."""

__version__ = "0.4.0"
