"""Saga generation worker: queue, pipeline stages and persistence."""
