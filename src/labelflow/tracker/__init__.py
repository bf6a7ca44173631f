"""Bundled task tracker implementations."""

from labelflow.tracker.local import LocalTaskTracker

__all__ = ["LocalTaskTracker"]
