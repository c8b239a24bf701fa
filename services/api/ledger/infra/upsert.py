"""Dialect-aware INSERT ... ON CONFLICT helpers.

Natural-key upserts go through the store's unique constraints instead of
read-then-write, so concurrent requests cannot create duplicate rows.
Postgres and SQLite share the same `on_conflict_*` API.
"""
from typing import Any, Callable, Optional, Sequence, Union

from sqlalchemy.orm import Session
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert


def _insert_for(db: Session, model):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert(model)
    if dialect == "sqlite":
        return sqlite_insert(model)
    raise NotImplementedError(f"upsert not supported on dialect {dialect!r}")


def upsert(
    db: Session,
    model,
    values: dict[str, Any],
    *,
    conflict_cols: Sequence[str],
    update: Optional[Union[dict[str, Any], Callable[..., dict[str, Any]]]] = None,
):
    """Insert `values`, or on conflict apply `update` (or do nothing).

    `update` may be a callable taking the statement's `excluded` namespace,
    for increments like `quantity = quantity + excluded.quantity`.
    Returns the number of rows inserted or updated.
    """
    stmt = _insert_for(db, model).values(**values)
    if update is None:
        stmt = stmt.on_conflict_do_nothing(index_elements=list(conflict_cols))
    else:
        set_ = update(stmt.excluded) if callable(update) else update
        stmt = stmt.on_conflict_do_update(index_elements=list(conflict_cols), set_=set_)
    result = db.execute(stmt)
    return result.rowcount
