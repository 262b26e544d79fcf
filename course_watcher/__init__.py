"""
Course Watcher - Catalog change detection and seat alerts.

This package provides functionality to:
- Index which classes and sections users are watching
- Re-fetch the latest catalog data for watched classes
- Detect seats opening and sections being added or removed
- Notify every subscriber of a detected change exactly once per cycle
"""

__version__ = "1.0.0"
__author__ = "Course Watcher Team"
