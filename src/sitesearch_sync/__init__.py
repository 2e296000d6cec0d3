"""
Keep a hosted search index in sync with the content of a static site.
"""

__version__ = "1.0.0"
