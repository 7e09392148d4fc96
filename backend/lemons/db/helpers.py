"""Database helpers shared by the reconciliation services"""
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session


def conflict_insert(db: Session, model):
    """Return a dialect-specific INSERT that supports ON CONFLICT clauses.

    Idempotent writes in this service are single statements backed by a
    unique constraint. PostgreSQL runs in production and SQLite in tests;
    both dialects expose ``on_conflict_do_update`` / ``on_conflict_do_nothing``
    with the same signature.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise NotImplementedError(f"Upsert is not supported for dialect '{dialect}'")
