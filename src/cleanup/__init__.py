"""Segment cleanup layer.

This module hands superseded segments to the external deletion subsystem.
Cleanup is best effort and never blocks lineage transitions.
"""
