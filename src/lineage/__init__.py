"""Segment lineage protocol.

This module validates and commits segment replacements for a table.
It derives the served segment view and schedules proactive cleanup.
"""
