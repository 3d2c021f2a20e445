"""Ingestion layer.

This package contains the channels that receive telemetry (push change
stream, periodic poll, synthetic generator) and turn it into normalized
updates for the state store.
"""

__all__: list[str] = []
