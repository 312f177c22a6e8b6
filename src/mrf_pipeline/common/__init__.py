"""Shared infrastructure for mrf_pipeline: errors and logging."""
