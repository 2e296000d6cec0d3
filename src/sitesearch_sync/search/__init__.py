"""
Search Service Package

Provides the asynchronous REST client used to reach the hosted search index.
"""

from .client import SearchClient, SearchIndex

__all__ = [
    "SearchClient",
    "SearchIndex",
]
