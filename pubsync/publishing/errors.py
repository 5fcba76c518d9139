"""Exceptions raised by the publishing layer.

Schema problems, query construction misuse and discovery failures all fail
fast with a descriptive message instead of letting a partial dependency set
reach the apply phase.

Examples
--------
>>> from pubsync.publishing.errors import UnknownEntityTypeError
>>> raise UnknownEntityTypeError("Entity type 'orders' is not registered.")
"""

from __future__ import annotations

import typing as typ

if typ.TYPE_CHECKING:
    import collections.abc as cabc

    from .domain import EntityType, KeyTuple, RelationshipKind


class PublishingError(Exception):
    """Base class for draft/production synchronisation failures."""


class SchemaError(PublishingError):
    """Raised when schema metadata is missing or inconsistent."""


class UnknownEntityTypeError(SchemaError, LookupError):
    """Raised when an entity type has no registered schema."""

    def __init__(self, entity_type: EntityType | str) -> None:
        name = entity_type if isinstance(entity_type, str) else entity_type.name
        msg = f"Entity type {name!r} is not registered."
        super().__init__(msg)
        self.entity_type = entity_type


class DuplicateEntityTypeError(SchemaError):
    """Raised when two schemas are registered under the same type name."""


class UnsupportedRelationshipError(SchemaError):
    """Raised for relationship kinds or shapes the resolver cannot expand."""

    def __init__(self, kind: RelationshipKind | str, detail: str) -> None:
        msg = f"Unsupported {kind!s} relationship: {detail}"
        super().__init__(msg)
        self.kind = kind


class DraftSchemaError(SchemaError):
    """Raised when draft tables do not mirror their production tables."""

    def __init__(self, problems: cabc.Sequence[str]) -> None:
        msg = "Draft schema mismatch: " + "; ".join(problems)
        super().__init__(msg)
        self.problems = tuple(problems)


class QueryBuildError(PublishingError, ValueError):
    """Raised when a membership predicate cannot be built."""


class EmptyKeySetError(QueryBuildError):
    """Raised when a membership predicate is requested for no keys."""


class KeyArityError(QueryBuildError):
    """Raised when a key tuple does not match the key column count."""

    def __init__(self, key: KeyTuple, expected: int) -> None:
        msg = f"Key {key!r} has {len(key)} value(s); expected {expected}."
        super().__init__(msg)
        self.key = key
        self.expected = expected


class DependencyDiscoveryError(PublishingError):
    """Raised when a relationship discovery query fails.

    The resolve operation is aborted so no publish or discard runs on an
    uncertain closure. The underlying database error is chained as
    ``__cause__``.
    """

    def __init__(
        self,
        source: EntityType,
        target: EntityType,
        kind: RelationshipKind,
    ) -> None:
        msg = (
            f"Discovery of {kind!s} dependencies from {source.name!r} "
            f"to {target.name!r} failed."
        )
        super().__init__(msg)
        self.source = source
        self.target = target
        self.kind = kind


__all__ = (
    "DependencyDiscoveryError",
    "DraftSchemaError",
    "DuplicateEntityTypeError",
    "EmptyKeySetError",
    "KeyArityError",
    "PublishingError",
    "QueryBuildError",
    "SchemaError",
    "UnknownEntityTypeError",
    "UnsupportedRelationshipError",
)
