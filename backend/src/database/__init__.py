"""
Database package initialization.

This module serves as the entry point for the database package. The package
follows a modular structure:
- base: declarative base, mixins and portable column types
- connection: async engine, session factory and health checks
- models: ORM models for items, transactions, orders, files, demos and sagas
"""

# Import submodules explicitly when needed to avoid circular dependencies

__all__ = []
