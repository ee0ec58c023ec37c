"""
Database Transaction Management
===============================

Utilities for managing SQLAlchemy sessions using Python context variables and a
decorator-based transaction wrapper.

Store services (``ChatStore``, ``QuotaStore``) carry a ``session_factory``
attribute; their methods are decorated with ``@transactional`` so that every
call runs inside one managed transaction, and nested calls made while a
transaction is open reuse the same session.

Key features
~~~~~~~~~~~~
- Context variable to store the active session
- Implicit reuse of existing sessions
- Automatic commit and rollback handling
- Clean session closure after execution
"""

from functools import wraps
import contextvars

# --------------------------------------------------------------------
# Context variable to store the current database session.
# --------------------------------------------------------------------
db_session_context = contextvars.ContextVar("db_session_context", default=None)
"""Context variable storing the active SQLAlchemy session."""


def transactional(func):
    """
    Decorator to wrap store methods in a managed SQLAlchemy transaction.

    Ensures that:
    - If a session already exists in context, it is reused.
    - Otherwise, a new session is created from ``self.session_factory``,
      committed, and closed.
    - On errors, the session is rolled back and closed.

    The wrapped method must accept a ``session`` keyword argument.

    Example
    -------
    >>> class Store:
    ...     def __init__(self, session_factory):
    ...         self.session_factory = session_factory
    ...
    ...     @transactional
    ...     def add(self, row, session=None):
    ...         session.add(row)
    ...         return row
    """
    @wraps(func)
    def wrap_func(self, *args, **kwargs):
        # Try to get an existing session from context
        session = db_session_context.get()
        if session:
            return func(self, *args, session=session, **kwargs)

        # Create a new session if none exists
        session = self.session_factory()
        token = db_session_context.set(session)

        try:
            result = func(self, *args, session=session, **kwargs)
            session.flush()   # Push pending changes
            session.commit()  # Commit transaction
        except Exception:
            session.rollback()  # Rollback on failure
            raise
        finally:
            session.close()
            db_session_context.reset(token)  # Clear context

        return result

    return wrap_func
