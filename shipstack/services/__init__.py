"""Synthesis and release services.

Cloud adapters live in ``shipstack.services.aws`` and are imported on demand.
"""
