from __future__ import annotations

from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select

from stagedwork.adapters.sqlalchemy import (
    SqlAlchemyBulkWriteExecutor,
    SqlAlchemyLookupService,
    SqlAlchemySavepointProvider,
    column_for,
    mapper_for,
)
from stagedwork.domain.errors import ConfigurationError
from stagedwork.domain.model import (
    AccessLevel,
    EnforcementMode,
    EntityType,
    ExecutionOptions,
    OperationKind,
)
from tests.helpers.tables import COMPANY, EMPLOYEE, UNMAPPED, Company, Employee

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine
    from sqlalchemy.orm import Session

PARTIAL = ExecutionOptions(all_or_none=False)


class ReadOnlyPolicy:
    def allows(
        self,
        entity_type: EntityType,
        kind: OperationKind,
        access_level: AccessLevel | None,
    ) -> bool:
        return False


def _names(session: Session) -> list[object]:
    stmt = select(column_for(COMPANY, "name")).order_by(column_for(COMPANY, "id"))
    return list(session.scalars(stmt))


def test_insert_assigns_identities(session: Session) -> None:
    executor = SqlAlchemyBulkWriteExecutor(session)
    companies = [Company("Acme"), Company("Globex")]

    results = executor.execute(COMPANY, OperationKind.INSERT, companies)

    assert all(result.success for result in results)
    assert [result.identity for result in results] == [companies[0].id, companies[1].id]
    assert _names(session) == ["Acme", "Globex"]


def test_failed_row_rolls_back_the_whole_batch(session: Session) -> None:
    executor = SqlAlchemyBulkWriteExecutor(session)

    results = executor.execute(COMPANY, OperationKind.INSERT, [Company("Acme"), Company(None)])

    assert [result.success for result in results] == [False, False]
    assert results[0].errors[0].code == "ALL_OR_NONE"
    assert results[1].errors[0].code == "IntegrityError"
    assert _names(session) == []


def test_partial_batch_keeps_successful_rows(session: Session) -> None:
    executor = SqlAlchemyBulkWriteExecutor(session)
    session.add(Company("Acme", code="ACME"))
    session.flush()

    results = executor.execute(
        COMPANY,
        OperationKind.INSERT,
        [Company("Initech", code="INIT"), Company("Duplicate", code="ACME")],
        options=PARTIAL,
    )

    assert [result.success for result in results] == [True, False]
    assert _names(session) == ["Acme", "Initech"]


def test_sparse_update_writes_only_masked_fields(session: Session) -> None:
    executor = SqlAlchemyBulkWriteExecutor(session)
    company = Company("Acme", rating="cold")
    executor.execute(COMPANY, OperationKind.INSERT, [company])

    company.name = "Renamed locally"
    company.rating = "hot"
    (result,) = executor.execute(
        COMPANY, OperationKind.UPDATE, [company], field_mask=frozenset({"rating"})
    )

    assert result.success
    row = session.execute(
        select(column_for(COMPANY, "name"), column_for(COMPANY, "rating"))
    ).one()
    assert tuple(row) == ("Acme", "hot")
    assert company.name == "Acme"


def test_update_of_missing_row_reports_not_found(session: Session) -> None:
    executor = SqlAlchemyBulkWriteExecutor(session)

    (full,) = executor.execute(COMPANY, OperationKind.UPDATE, [Company("Ghost", id=99)])
    (sparse,) = executor.execute(
        COMPANY,
        OperationKind.UPDATE,
        [Company("Ghost", id=99)],
        field_mask=frozenset({"name"}),
    )

    assert full.errors[0].code == "NOT_FOUND"
    assert sparse.errors[0].code == "NOT_FOUND"


def test_full_update_merges_detached_record(session: Session) -> None:
    executor = SqlAlchemyBulkWriteExecutor(session)
    company = Company("Acme")
    executor.execute(COMPANY, OperationKind.INSERT, [company])
    detached = Company("Acme Corp", id=company.id, rating="warm")

    (result,) = executor.execute(COMPANY, OperationKind.UPDATE, [detached])

    assert result.success
    assert _names(session) == ["Acme Corp"]


def test_soft_and_permanent_delete(session: Session) -> None:
    executor = SqlAlchemyBulkWriteExecutor(session)
    employee = Employee("Jane")
    executor.execute(EMPLOYEE, OperationKind.INSERT, [employee])

    executor.execute(EMPLOYEE, OperationKind.DELETE, [employee])
    archived = session.scalar(select(column_for(EMPLOYEE, "archived")))
    assert archived is True

    executor.execute(EMPLOYEE, OperationKind.PERMANENT_DELETE, [employee])
    assert session.scalar(select(column_for(EMPLOYEE, "id"))) is None


def test_native_upsert_inserts_or_updates_by_identity(session: Session) -> None:
    executor = SqlAlchemyBulkWriteExecutor(session)
    existing = Company("Acme")
    executor.execute(COMPANY, OperationKind.INSERT, [existing])

    results = executor.execute(
        COMPANY,
        OperationKind.UPSERT,
        [Company("Acme Corp", id=existing.id), Company("Globex")],
    )

    assert executor.supports_upsert
    assert all(result.success for result in results)
    assert _names(session) == ["Acme Corp", "Globex"]


def test_user_mode_consults_access_policy(session: Session) -> None:
    executor = SqlAlchemyBulkWriteExecutor(session, access_policy=ReadOnlyPolicy())
    options = ExecutionOptions(mode=EnforcementMode.USER, access_level=AccessLevel.USER_MODE)

    (denied,) = executor.execute(COMPANY, OperationKind.INSERT, [Company("Acme")], options=options)
    (allowed,) = executor.execute(COMPANY, OperationKind.INSERT, [Company("Acme")])

    assert denied.errors[0].code == "INSUFFICIENT_ACCESS"
    assert allowed.success


def test_lookup_issues_one_query_for_all_values(session: Session) -> None:
    acme = Company("Acme", code="ACME")
    globex = Company("Globex", code="GLBX")
    session.add_all([acme, globex])
    session.flush()

    found = SqlAlchemyLookupService(session).find_by_external_id(
        COMPANY, "code", {"ACME", "GLBX", "NONE"}
    )

    assert found == {"ACME": acme.id, "GLBX": globex.id}
    assert SqlAlchemyLookupService(session).find_by_external_id(COMPANY, "code", set()) == {}


def test_savepoint_rollback_discards_writes(session: Session) -> None:
    savepoints = SqlAlchemySavepointProvider(session)
    executor = SqlAlchemyBulkWriteExecutor(session)
    executor.execute(COMPANY, OperationKind.INSERT, [Company("Kept")])

    handle = savepoints.open()
    executor.execute(COMPANY, OperationKind.INSERT, [Company("Dropped")])
    savepoints.rollback(handle)
    savepoints.rollback(handle)

    assert _names(session) == ["Kept"]


def test_unmapped_types_are_configuration_errors(mapped_engine: Engine) -> None:
    with pytest.raises(ConfigurationError):
        mapper_for(UNMAPPED)
    with pytest.raises(ConfigurationError):
        column_for(COMPANY, "missing")
