"""Prometheus metrics for the stock token service."""
