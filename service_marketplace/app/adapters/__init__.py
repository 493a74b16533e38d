"""
Adapters package for the marketplace service.

Contains the document store the route handlers read from and write to.
The response cache never talks to it directly: it only holds payloads the
routes already fetched.
"""

from .document_store import InMemoryDocumentStore

__all__ = [
    "InMemoryDocumentStore",
]
