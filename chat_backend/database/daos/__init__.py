"""
DAOs Package — Data Access Layer (SQLAlchemy 2.0)
=================================================

Encapsulates all interactions with the ORM entities behind small CRUD APIs.

Conventions
-----------
- Every method takes the active `Session` as its first argument
- Session lifecycle (open/commit/rollback) is handled by the store services
- Failures are logged with `logger.exception` and re-raised

Contents
--------
- ConversationDao
    * create, fetch by id, fetch by owner (most recent first)
    * owner-restricted title / visibility updates, `updated_at` bump

- TurnDao
    * create one or many turns, fetch in `(created_at, id)` order
    * delete from a position (regeneration), replace parts, update votes

- QuotaDao
    * fetch / stage quota counters
"""
