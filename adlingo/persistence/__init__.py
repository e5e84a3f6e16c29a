"""
Persistence layer for jobs, tasks and their versions.
"""

from .database import CLAIMABLE_STATUSES, Database

__all__ = ['Database', 'CLAIMABLE_STATUSES']
