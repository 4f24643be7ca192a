"""Ingestion layer.

This package turns raw GPS51 position reports into normalized vehicle state
and drives the periodic ingestion job.
"""

__all__: list[str] = []
