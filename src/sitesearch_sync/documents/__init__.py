"""
Documents Package

Rendered documents handed over by the site build, the rules deciding which
of them get indexed, and a loader for already rendered site directories.
"""

from .models import Document
from .browser import FileBrowser
from .loader import load_site

__all__ = [
    "Document",
    "FileBrowser",
    "load_site",
]
