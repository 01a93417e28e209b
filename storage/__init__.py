"""
Storage Package.

This package manages all data persistence.

Modules:
- database: Engine and session management
- models/: ORM models
- repositories/: Data access layer
"""

from .database import Database

__all__ = ["Database"]
