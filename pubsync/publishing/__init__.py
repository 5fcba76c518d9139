"""Dependency resolution and transactional publish/discard.

This package resolves the closure of DIRTY draft records reachable from a set
of root records and applies it between the draft and production stores in a
single transaction.

Examples
--------
Publish an order together with its dirty customer and line items:

>>> async with SqlAlchemyPublishingUnitOfWork(session_factory) as uow:
...     outcome = await publish_records(uow, registry, [RecordRef(orders, (5,))])
"""

from .apply import Discarder, Publisher
from .declarative import registry_from_declarative
from .domain import (
    Dependency,
    EntitySchema,
    EntityType,
    JoinTable,
    PublishOutcome,
    PublishStatus,
    RecordRef,
    Relationship,
    RelationshipKind,
    SyncOperation,
)
from .errors import (
    DependencyDiscoveryError,
    DraftSchemaError,
    DuplicateEntityTypeError,
    EmptyKeySetError,
    KeyArityError,
    PublishingError,
    QueryBuildError,
    SchemaError,
    UnknownEntityTypeError,
    UnsupportedRelationshipError,
)
from .query import KeyMembership, key_membership
from .resolver import DependencyResolver
from .schema import SchemaIntrospector, SchemaRegistry
from .schema_check import detect_draft_schema_drift, require_draft_schema
from .services import discard_records, publish_records, resolve_dependencies
from .uow import PublishingUnitOfWork, SqlAlchemyPublishingUnitOfWork

__all__ = (
    "Dependency",
    "DependencyDiscoveryError",
    "DependencyResolver",
    "Discarder",
    "DraftSchemaError",
    "DuplicateEntityTypeError",
    "EmptyKeySetError",
    "EntitySchema",
    "EntityType",
    "JoinTable",
    "KeyArityError",
    "KeyMembership",
    "PublishOutcome",
    "PublishStatus",
    "Publisher",
    "PublishingError",
    "PublishingUnitOfWork",
    "QueryBuildError",
    "RecordRef",
    "Relationship",
    "RelationshipKind",
    "SchemaError",
    "SchemaIntrospector",
    "SchemaRegistry",
    "SqlAlchemyPublishingUnitOfWork",
    "SyncOperation",
    "UnknownEntityTypeError",
    "UnsupportedRelationshipError",
    "detect_draft_schema_drift",
    "discard_records",
    "key_membership",
    "publish_records",
    "registry_from_declarative",
    "require_draft_schema",
    "resolve_dependencies",
)
