from __future__ import annotations

import pytest

from stagedwork.domain.errors import ConfigurationError, InvalidRegistrationError
from stagedwork.domain.model import EntityType, OperationKind
from stagedwork.domain.registry import EntityBatchRegistry
from tests.helpers.records import (
    ACCOUNT,
    CONTACT,
    DECLARED_TYPES,
    OPPORTUNITY,
    Account,
    Contact,
    Unregistered,
)


@pytest.fixture
def registry() -> EntityBatchRegistry:
    return EntityBatchRegistry(DECLARED_TYPES)


def test_declared_order_is_preserved_and_bare_classes_are_wrapped() -> None:
    registry = EntityBatchRegistry([Contact, ACCOUNT])

    assert [entity_type.name for entity_type in registry.entity_types] == ["Contact", "Account"]
    assert registry.is_empty


def test_duplicate_declarations_are_rejected() -> None:
    with pytest.raises(ConfigurationError, match="Account"):
        EntityBatchRegistry([ACCOUNT, EntityType(Account, name="Other")])


def test_registering_undeclared_type_leaves_registry_untouched(
    registry: EntityBatchRegistry,
) -> None:
    with pytest.raises(ConfigurationError, match="Unregistered"):
        registry.register(OperationKind.INSERT, Unregistered("ghost"))

    assert registry.is_empty


def test_explicit_entity_type_must_match_record(registry: EntityBatchRegistry) -> None:
    with pytest.raises(ConfigurationError):
        registry.register(OperationKind.INSERT, Account("acme"), entity_type=CONTACT)

    assert registry.is_empty


def test_records_are_tracked_by_reference_not_value(registry: EntityBatchRegistry) -> None:
    first = Contact("same")
    second = Contact("same")

    registry.register(OperationKind.INSERT, first)
    registry.register(OperationKind.INSERT, second)
    registry.register(OperationKind.INSERT, first)

    assert registry.get_registered(CONTACT, OperationKind.INSERT) == (first, second)
    assert len(registry) == 2


def test_insert_requires_record_without_identity(registry: EntityBatchRegistry) -> None:
    with pytest.raises(InvalidRegistrationError):
        registry.register(OperationKind.INSERT, Account("acme", id=3))


@pytest.mark.parametrize(
    "kind",
    [OperationKind.UPDATE, OperationKind.DELETE, OperationKind.PERMANENT_DELETE],
)
def test_existing_record_operations_require_identity(
    registry: EntityBatchRegistry, kind: OperationKind
) -> None:
    with pytest.raises(InvalidRegistrationError):
        registry.register(kind, Account("acme"))

    assert registry.is_empty


def test_upsert_accepts_records_with_and_without_identity(registry: EntityBatchRegistry) -> None:
    fresh = Account("fresh")
    known = Account("known", id=9)

    registry.register(OperationKind.UPSERT, fresh)
    registry.register(OperationKind.UPSERT, known)

    assert registry.get_registered(ACCOUNT, OperationKind.UPSERT) == (fresh, known)


def test_field_masks_merge_by_union(registry: EntityBatchRegistry) -> None:
    account = Account("acme", id=1)

    registry.register(OperationKind.UPDATE, account, fields=["name"])
    registry.register(OperationKind.UPDATE, account, fields=["rating"])

    assert registry.field_mask_for(account) == frozenset({"name", "rating"})
    assert len(registry) == 1


def test_full_update_absorbs_sparse_registration(registry: EntityBatchRegistry) -> None:
    account = Account("acme", id=1)

    registry.register(OperationKind.UPDATE, account, fields=["name"])
    registry.register(OperationKind.UPDATE, account)
    registry.register(OperationKind.UPDATE, account, fields=["rating"])

    assert registry.field_mask_for(account) is None


def test_field_mask_validation(registry: EntityBatchRegistry) -> None:
    account = Account("acme", id=1)

    with pytest.raises(InvalidRegistrationError, match="nope"):
        registry.register(OperationKind.UPDATE, account, fields=["nope"])
    with pytest.raises(InvalidRegistrationError):
        registry.register(OperationKind.UPDATE, account, fields=[])
    with pytest.raises(InvalidRegistrationError):
        registry.register(OperationKind.DELETE, account, fields=["name"])

    assert registry.is_empty


def test_include_fields_only_widens_sparse_updates(registry: EntityBatchRegistry) -> None:
    sparse = Account("sparse", id=1)
    full = Account("full", id=2)
    registry.register(OperationKind.UPDATE, sparse, fields=["name"])
    registry.register(OperationKind.UPDATE, full)

    registry.include_fields(sparse, ["parent_id"])
    registry.include_fields(full, ["parent_id"])

    assert registry.field_mask_for(sparse) == frozenset({"name", "parent_id"})
    assert registry.field_mask_for(full) is None


def test_update_groups_split_consecutive_mask_runs(registry: EntityBatchRegistry) -> None:
    first = Account("a", id=1)
    second = Account("b", id=2)
    third = Account("c", id=3)
    fourth = Account("d", id=4)
    registry.register(OperationKind.UPDATE, first, fields=["name"])
    registry.register(OperationKind.UPDATE, second, fields=["name"])
    registry.register(OperationKind.UPDATE, third)
    registry.register(OperationKind.UPDATE, fourth, fields=["name"])

    groups = list(registry.update_groups(ACCOUNT))

    assert groups == [
        (frozenset({"name"}), [first, second]),
        (None, [third]),
        (frozenset({"name"}), [fourth]),
    ]


def test_get_registered_rejects_undeclared_types(registry: EntityBatchRegistry) -> None:
    with pytest.raises(ConfigurationError):
        registry.get_registered(Unregistered, OperationKind.INSERT)

    assert registry.get_registered(OPPORTUNITY, OperationKind.INSERT) == ()


def test_contains_reports_per_kind_membership(registry: EntityBatchRegistry) -> None:
    account = Account("acme", id=1)
    registry.register(OperationKind.DELETE, account)

    assert registry.contains(account, OperationKind.DELETE)
    assert not registry.contains(account, OperationKind.UPDATE)
    assert not registry.contains(Unregistered("x"), OperationKind.DELETE)
