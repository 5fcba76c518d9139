"""Key-membership predicates for draft/production statements.

Every statement the publishing layer issues restricts rows by a set of
primary-key (or foreign-key) tuples. This module renders that restriction as
a parameterized SQL fragment and keeps dialect differences for composite keys
in one place.

Examples
--------
Build a composite-key predicate for PostgreSQL:

>>> from sqlalchemy.dialects import postgresql
>>> membership = key_membership(
...     "shipments", ("order_id", "line_no"), [(5, 1), (5, 2)],
...     dialect=postgresql.dialect(),
... )
>>> print(membership.sql)
(shipments.order_id, shipments.line_no) IN ((:key_0_0, :key_0_1), (:key_1_0, :key_1_1))
>>> membership.values
[5, 1, 5, 2]
"""

from __future__ import annotations

import dataclasses as dc
import itertools
import typing as typ

import sqlalchemy as sa

from .errors import EmptyKeySetError, KeyArityError

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from sqlalchemy.engine import Dialect

    from .domain import KeyTuple

# Dialects that accept row-value membership: (a, b) IN ((?, ?), ...).
TUPLE_IN_DIALECTS = frozenset({
    "cockroachdb",
    "duckdb",
    "mariadb",
    "mysql",
    "postgresql",
    "sqlite",
})


@dc.dataclass(frozen=True, slots=True)
class KeyMembership:
    """Rendered membership predicate.

    Attributes
    ----------
    sql : str
        SQL fragment with named placeholders, one group per key tuple.
    params : dict[str, object]
        Bind values keyed by placeholder name, in placeholder order.
    """

    sql: str
    params: dict[str, object]

    @property
    def values(self) -> list[object]:
        """Return the flattened bind values in placeholder order."""
        return list(self.params.values())

    def clause(self) -> sa.TextClause:
        """Return the fragment as a SQLAlchemy text clause with bound values."""
        return sa.text(self.sql).bindparams(**self.params)


def supports_tuple_in(dialect: Dialect) -> bool:
    """Return True when ``dialect`` renders row-value ``IN`` predicates."""
    return dialect.name in TUPLE_IN_DIALECTS


def quote_column(dialect: Dialect, qualifier: str | None, column: str) -> str:
    """Return ``column`` quoted for ``dialect``, optionally table-qualified."""
    preparer = dialect.identifier_preparer
    quoted = preparer.quote(column)
    if qualifier is None:
        return quoted
    return f"{preparer.quote(qualifier)}.{quoted}"


def placeholder_groups(
    keys: cabc.Sequence[KeyTuple],
    *,
    prefix: str = "key",
) -> list[list[str]]:
    """Return one list of placeholder names per key tuple."""
    return [
        [f"{prefix}_{row}_{position}" for position in range(len(key))]
        for row, key in enumerate(keys)
    ]


def flatten_key_values(keys: cabc.Iterable[KeyTuple]) -> list[object]:
    """Return key values flattened in tuple order."""
    return list(itertools.chain.from_iterable(keys))


def _check_keys(keys: cabc.Sequence[KeyTuple], width: int) -> None:
    if not keys:
        msg = "Cannot build a membership predicate for an empty key set."
        raise EmptyKeySetError(msg)
    for key in keys:
        if len(key) != width:
            raise KeyArityError(key, width)


def key_membership(
    qualifier: str | None,
    columns: cabc.Sequence[str],
    keys: cabc.Iterable[KeyTuple],
    *,
    dialect: Dialect,
    prefix: str = "key",
) -> KeyMembership:
    """Build a parameterized predicate matching rows whose key is in ``keys``.

    Parameters
    ----------
    qualifier : str | None
        Table name or alias used to qualify ``columns``.
    columns : collections.abc.Sequence[str]
        Key columns in key order.
    keys : collections.abc.Iterable[KeyTuple]
        Key tuples to match; each must have one value per column.
    dialect : Dialect
        Target dialect; decides quoting and the composite-key strategy.
    prefix : str, optional
        Placeholder name prefix, unique within one statement.

    Returns
    -------
    KeyMembership
        The rendered fragment and its bind values.

    Raises
    ------
    EmptyKeySetError
        If ``keys`` is empty. Callers skip the statement instead.
    KeyArityError
        If a key tuple does not have one value per column.
    """
    if not columns:
        msg = "Cannot build a membership predicate without key columns."
        raise EmptyKeySetError(msg)
    key_list = [tuple(key) for key in keys]
    _check_keys(key_list, len(columns))

    rendered = [quote_column(dialect, qualifier, column) for column in columns]
    groups = placeholder_groups(key_list, prefix=prefix)
    params = dict(
        zip(
            itertools.chain.from_iterable(groups),
            flatten_key_values(key_list),
            strict=True,
        )
    )

    if len(columns) == 1:
        marks = ", ".join(f":{group[0]}" for group in groups)
        return KeyMembership(f"{rendered[0]} IN ({marks})", params)

    if supports_tuple_in(dialect):
        marks = ", ".join(
            "(" + ", ".join(f":{name}" for name in group) + ")" for group in groups
        )
        return KeyMembership(f"({', '.join(rendered)}) IN ({marks})", params)

    alternatives = " OR ".join(
        "("
        + " AND ".join(
            f"{column} = :{name}" for column, name in zip(rendered, group, strict=True)
        )
        + ")"
        for group in groups
    )
    return KeyMembership(f"({alternatives})", params)


def batched_keys(
    keys: cabc.Sequence[KeyTuple],
    size: int,
) -> cabc.Iterator[tuple[KeyTuple, ...]]:
    """Yield ``keys`` in consecutive batches of at most ``size`` tuples."""
    if size < 1:
        msg = "Batch size must be a positive integer."
        raise ValueError(msg)
    yield from itertools.batched(keys, size)


__all__ = (
    "TUPLE_IN_DIALECTS",
    "KeyMembership",
    "batched_keys",
    "flatten_key_values",
    "key_membership",
    "placeholder_groups",
    "quote_column",
    "supports_tuple_in",
)
