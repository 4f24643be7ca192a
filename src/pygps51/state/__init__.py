"""State layer.

Holds the latest normalized snapshot per vehicle. Each ingestion overwrites
the previous row for the device; history lives in the trip store.
"""
