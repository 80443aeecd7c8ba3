"""
Import session contract and in-memory implementation.
"""
from .session import ImportSession, InMemoryImportSession

__all__ = [
    'ImportSession',
    'InMemoryImportSession',
]
