"""Multi-provider comparison: turns, fan-out aggregation and selection."""
