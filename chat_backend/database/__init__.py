"""
The `database` package is responsible for all interactions with the application's database.

Contents:
    - config:
        Settings and the SQLAlchemy engine / declarative base.

    - entities:
        SQLAlchemy entity models: conversations, turns and quota counters.

    - daos:
        Data Access Objects providing row-level operations for the entities.

    - core:
        Store services (`ChatStore`, `QuotaStore`) used by the orchestrator and
        the router; each public method runs in one transaction.

    - helpers:
        Transaction management and UTC time helpers.
"""
