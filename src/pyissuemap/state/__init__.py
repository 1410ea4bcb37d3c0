"""State/store layer.

This package is the single source of truth for how issue pages from the
query orchestrator, realtime change events and optimistic mutations are
merged into the rendered feature collection.
"""
