"""
The `helpers` package provides utilities that support database operations.

Contents
--------
- transactionManagement
    - Context variable (`db_session_context`) propagating the active session across calls
    - `@transactional` decorator for store methods:
        - Reuses an existing session if one is active in context
        - Otherwise creates one from `self.session_factory`, commits and closes it
        - Rolls back the session on errors

- clock
    UTC `utcnow()` and `as_utc()` (SQLite returns naive datetimes).
"""
