"""SQLAlchemy helpers for the relational source.

Modules
-------
session     Engine factory and a session factory whose sessions keep loaded
            attributes readable after commit/close.

Tags:
    batchloader, orm, sqlalchemy, session

Doc-Types:
    package-overview, module-index
"""

from __future__ import annotations

from batchloader.core.orm.session import (
    LoaderSession,
    create_loader_engine,
    loader_session_factory,
)

__all__ = [
    "LoaderSession",
    "create_loader_engine",
    "loader_session_factory",
]
