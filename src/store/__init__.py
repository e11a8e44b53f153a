"""Storage and versioning layer.

This module persists one versioned lineage record per table.
It gives the lineage manager compare-and-swap writes over that record.
"""
