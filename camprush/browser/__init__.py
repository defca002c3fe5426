"""
Browser-based page inspection
"""
from .inspector import PageInspector, InspectionError

__all__ = [
    "PageInspector",
    "InspectionError",
]
