"""State/store layer.

This package is the single source of truth for how updates from the push
channel, the poll channel, the liveness monitor and the synthetic generator
are merged into one consistent fleet snapshot.
"""
