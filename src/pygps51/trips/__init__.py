"""Trip layer.

Reconstructs trips from position history, converts vendor trip reports, and
deduplicates both against previously stored trips.
"""

__all__: list[str] = []
