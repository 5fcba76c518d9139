"""Tests for the foreign-key safe ordering of apply steps."""

from __future__ import annotations

from _publishing_helpers import (
    CUSTOMER,
    LINE_ITEM,
    ORDER,
    SHIPMENT,
    TAG,
    build_registry,
)
from pubsync.publishing import (
    EntitySchema,
    EntityType,
    Relationship,
    RelationshipKind,
    SchemaRegistry,
)
from pubsync.publishing.ordering import parent_map, parents_first


def test_parents_come_before_children() -> None:
    """Referenced types are ordered before the types holding the foreign key."""
    registry = build_registry()

    ordered = parents_first(registry, [LINE_ITEM, SHIPMENT, ORDER, CUSTOMER])

    assert ordered.index(CUSTOMER) < ordered.index(ORDER)
    assert ordered.index(ORDER) < ordered.index(LINE_ITEM)
    assert ordered.index(ORDER) < ordered.index(SHIPMENT)


def test_ties_keep_registration_order() -> None:
    """Unrelated types keep the order in which they were registered."""
    registry = build_registry()

    assert parents_first(registry, [TAG, CUSTOMER]) == [CUSTOMER, TAG]


def test_many_to_many_edges_impose_no_order() -> None:
    """Join-table relationships do not make either side a parent."""
    registry = build_registry()

    assert parent_map(registry, [ORDER, TAG]) == {ORDER: set(), TAG: set()}


def test_has_many_and_has_one_agree_on_the_parent() -> None:
    """Both directions of the same edge name the referenced type as parent."""
    registry = build_registry()

    parents = parent_map(registry, [CUSTOMER, ORDER])

    assert parents[ORDER] == {CUSTOMER}
    assert parents[CUSTOMER] == set()


def test_cycles_fall_back_to_registration_order() -> None:
    """A relationship cycle yields registration order instead of failing."""
    first, second = EntityType("first"), EntityType("second")
    registry = SchemaRegistry([
        EntitySchema(
            first,
            "first",
            ("id",),
            ("id", "second_id"),
            relationships=(
                Relationship(RelationshipKind.HAS_ONE, second, ("second_id",)),
            ),
        ),
        EntitySchema(
            second,
            "second",
            ("id",),
            ("id", "first_id"),
            relationships=(
                Relationship(RelationshipKind.HAS_ONE, first, ("first_id",)),
            ),
        ),
    ])

    assert parents_first(registry, [second, first]) == [first, second]


def test_belongs_to_targets_hold_the_foreign_key() -> None:
    """The target of a belongs-to edge is copied after its source."""
    account, profile = EntityType("account"), EntityType("profile")
    registry = SchemaRegistry([
        EntitySchema(
            profile,
            "profiles",
            ("id",),
            ("id", "account_id"),
        ),
        EntitySchema(
            account,
            "accounts",
            ("id",),
            ("id",),
            relationships=(
                Relationship(RelationshipKind.BELONGS_TO, profile, ("account_id",)),
            ),
        ),
    ])

    assert parent_map(registry, [account, profile])[profile] == {account}
    assert parents_first(registry, [profile, account]) == [account, profile]
