"""Occurrence delivery pipeline.

Scheduler -> grouping -> batching -> queue -> dispatcher -> gateway.
"""
