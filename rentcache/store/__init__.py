"""
Local persistence.

- Database: SQLite connection and transaction handling
- LocalStore: records and sync checkpoint
- MutationBuffer: local writes awaiting a push
"""

from .database import Database
from .local_store import LocalStore
from .mutation_buffer import MutationBuffer

__all__ = ['Database', 'LocalStore', 'MutationBuffer']
