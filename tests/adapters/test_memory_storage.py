from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from stagedwork.adapters.memory import InMemoryStorage
from stagedwork.domain.errors import SavepointError
from stagedwork.domain.model import (
    AccessLevel,
    EnforcementMode,
    EntityType,
    ExecutionOptions,
    OperationKind,
)
from tests.helpers.records import ACCOUNT, CONTACT, Account, Contact

if TYPE_CHECKING:
    from collections.abc import Callable

USER_OPTIONS = ExecutionOptions(mode=EnforcementMode.USER, access_level=AccessLevel.STRICT)


def _named(name: str) -> Callable[[object], bool]:
    return lambda record: getattr(record, "name", None) == name


class DenyDeletes:
    def __init__(self) -> None:
        self.checked: list[tuple[str, OperationKind, AccessLevel | None]] = []

    def allows(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        access_level: AccessLevel | None,
    ) -> bool:
        self.checked.append((entity_type.name, kind, access_level))
        return kind is not OperationKind.DELETE


def test_insert_reports_identities_without_touching_records() -> None:
    storage = InMemoryStorage()
    first = Account("a")
    second = Account("b")

    results = storage.execute(ACCOUNT, OperationKind.INSERT, [first, second])

    assert [result.identity for result in results] == [1, 2]
    assert first.id is None
    stored = storage.get(ACCOUNT, 2)
    assert isinstance(stored, Account)
    assert stored.name == "b"


def test_all_or_none_batch_applies_nothing_when_a_row_fails() -> None:
    storage = InMemoryStorage()
    storage.reject(ACCOUNT, OperationKind.INSERT, _named("bad"))

    results = storage.execute(ACCOUNT, OperationKind.INSERT, [Account("ok"), Account("bad")])

    assert [result.success for result in results] == [False, False]
    assert results[0].errors[0].code == "ALL_OR_NONE"
    assert results[1].errors[0].code == "REJECTED"
    assert storage.rows(ACCOUNT) == []


def test_partial_batch_keeps_successful_rows() -> None:
    storage = InMemoryStorage()
    storage.reject(ACCOUNT, OperationKind.INSERT, _named("bad"))

    results = storage.execute(
        ACCOUNT,
        OperationKind.INSERT,
        [Account("ok"), Account("bad")],
        options=ExecutionOptions(all_or_none=False),
    )

    assert [result.success for result in results] == [True, False]
    assert len(storage.rows(ACCOUNT)) == 1


def test_update_of_unknown_record_fails() -> None:
    storage = InMemoryStorage()

    (result,) = storage.execute(ACCOUNT, OperationKind.UPDATE, [Account("ghost", id=42)])

    assert not result.success
    assert result.errors[0].code == "NOT_FOUND"


def test_soft_and_permanent_delete() -> None:
    storage = InMemoryStorage()
    contact = Contact("jane")
    storage.seed(CONTACT, contact)

    storage.execute(CONTACT, OperationKind.DELETE, [contact])
    stored = storage.get(CONTACT, contact.id)
    assert isinstance(stored, Contact)
    assert stored.archived

    storage.execute(CONTACT, OperationKind.PERMANENT_DELETE, [contact])
    assert (CONTACT, contact.id) not in storage


def test_access_policy_only_applies_in_user_mode() -> None:
    policy = DenyDeletes()
    storage = InMemoryStorage(access_policy=policy)
    account = Account("acme")
    storage.seed(ACCOUNT, account)

    denied = storage.execute(ACCOUNT, OperationKind.DELETE, [account], options=USER_OPTIONS)
    assert denied[0].errors[0].code == "INSUFFICIENT_ACCESS"
    assert policy.checked == [("Account", OperationKind.DELETE, AccessLevel.STRICT)]

    allowed = storage.execute(ACCOUNT, OperationKind.DELETE, [account], options=ExecutionOptions())
    assert allowed[0].success
    assert len(policy.checked) == 1


def test_savepoints_restore_tables_and_identity_counters() -> None:
    storage = InMemoryStorage()
    storage.execute(ACCOUNT, OperationKind.INSERT, [Account("kept")])

    handle = storage.open()
    storage.execute(ACCOUNT, OperationKind.INSERT, [Account("dropped")])
    storage.rollback(handle)

    assert [getattr(row, "name") for row in storage.rows(ACCOUNT)] == ["kept"]  # noqa: B009
    (result,) = storage.execute(ACCOUNT, OperationKind.INSERT, [Account("next")])
    assert result.identity == 2
    assert storage.open_savepoints == 0


def test_released_savepoints_cannot_be_rolled_back() -> None:
    storage = InMemoryStorage()
    handle = storage.open()
    storage.release(handle)

    with pytest.raises(SavepointError):
        storage.rollback(handle)


def test_lookup_matches_stored_values() -> None:
    storage = InMemoryStorage()
    storage.seed(ACCOUNT, Account("a", external_key="A"))
    storage.seed(ACCOUNT, Account("b", external_key="B"))

    found = storage.find_by_external_id(ACCOUNT, "external_key", {"A", "Z"})

    assert found == {"A": 1}
    assert storage.lookups == [("Account", "external_key", frozenset({"A", "Z"}))]
