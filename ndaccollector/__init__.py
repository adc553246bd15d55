"""Collector that polls NDAC network group, metric and SIM APIs and hands responses to a writer."""

__version__ = "0.1.0"
__all__ = ["__version__"]