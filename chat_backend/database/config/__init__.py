"""
The `config` package provides two core building blocks for establishing and managing database connections.

Contents:
    - config: Configuration layer - strongly typed app settings loaded from environment variables (with .env support), exposed through a singleton Settings object
    - connection_engine: Database layer - builds the connection URL and Engine from those settings on demand, and holds the shared MetaData and the declarative base for ORM models
"""
