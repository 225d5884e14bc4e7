"""
Database package initialization.

- base: declarative base and shared mixins
- connection: async engine, session factory and FastAPI dependency
- models: ORM models for orders, inventory, payments and returns
"""
