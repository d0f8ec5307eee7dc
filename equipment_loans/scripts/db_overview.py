#!/usr/bin/env python3
"""Database overview and ledger integrity checks for the equipment loan store."""

from __future__ import annotations

import argparse
import os
import sys
from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from sqlalchemy import create_engine, inspect, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from equipment_loans.db.store import SqlAlchemyStore
from equipment_loans.models.loan_models import Loan
from equipment_loans.services.loan_state_machine import LOAN_STATUSES, TERMINAL_STATUSES
from equipment_loans.services.query_service import ledger_discrepancies


EXPECTED_COLUMNS: dict[str, list[str]] = {
    "users": ["id", "name", "role", "teacherId", "isActive"],
    "equipment": ["id", "name", "status", "condition", "totalQuantity", "availableQuantity"],
    "loans": [
        "id",
        "userId",
        "equipmentId",
        "teacherId",
        "status",
        "preferredStartDate",
        "preferredEndDate",
        "purpose",
    ],
    "notifications": ["id", "userId", "type", "title", "message", "isRead", "relatedLoanId"],
    "audit_logs": ["AuditID", "EntityType", "EntityID", "Action", "UserID", "CreatedAt"],
}


@dataclass
class CheckResult:
    name: str
    ok: bool
    detail: str


def _print_section(title: str) -> None:
    print(f"\n=== {title} ===")


def _get_engine(db_url: str) -> Engine:
    return create_engine(db_url, pool_pre_ping=True, future=True)


def _scalar(engine: Engine, sql: str, params: dict | None = None):
    with engine.connect() as conn:
        return conn.execute(text(sql), params or {}).scalar()


def run_column_checks(engine: Engine) -> list[CheckResult]:
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())
    results: list[CheckResult] = []
    for table, expected in EXPECTED_COLUMNS.items():
        if table not in tables:
            results.append(CheckResult(f"columns:{table}", False, "table missing"))
            continue
        actual = {column["name"] for column in inspector.get_columns(table)}
        missing = [name for name in expected if name not in actual]
        results.append(
            CheckResult(
                f"columns:{table}",
                not missing,
                "ok" if not missing else f"missing={','.join(missing)}",
            )
        )
    return results


def run_integrity_checks(db: Session) -> list[CheckResult]:
    checks: list[CheckResult] = []

    statuses = Counter(db.execute(select(Loan.Status)).scalars().all())
    unknown = {status: count for status, count in statuses.items() if status not in LOAN_STATUSES}
    checks.append(
        CheckResult(
            "loans:unrecognized_status",
            not unknown,
            "count=0" if not unknown else ", ".join(f"{status}={count}" for status, count in sorted(unknown.items(), key=str)),
        )
    )

    for issue in ledger_discrepancies(SqlAlchemyStore(db)):
        checks.append(
            CheckResult(
                f"equipment:{issue['equipmentId']}:ledger",
                False,
                (
                    f"{issue['name']} total={issue['totalQuantity']} available={issue['availableQuantity']} "
                    f"outstanding_loans={issue['outstandingLoans']}"
                ),
            )
        )
    if len(checks) == 1:
        checks.append(CheckResult("equipment:ledger", True, "all units balanced"))
    return checks


def _print_results(title: str, rows: Iterable[CheckResult]) -> None:
    _print_section(title)
    for row in rows:
        status = "OK" if row.ok else "FAIL"
        print(f"[{status}] {row.name} :: {row.detail}")


def _print_status_counts(db: Session) -> None:
    _print_section("Loans by Status")
    statuses = Counter(db.execute(select(Loan.Status)).scalars().all())
    for status in LOAN_STATUSES:
        marker = " (terminal)" if status in TERMINAL_STATUSES else ""
        print(f"{status}{marker}: {statuses.get(status, 0)}")


def _print_row_counts(engine: Engine) -> None:
    _print_section("Row Counts")
    tables = set(inspect(engine).get_table_names())
    for table in EXPECTED_COLUMNS:
        if table not in tables:
            print(f"{table}: missing")
            continue
        count = _scalar(engine, f"SELECT COUNT(*) FROM {table}")
        print(f"{table}: {int(count or 0)}")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Equipment loans DB overview")
    parser.add_argument("--db-url", default=os.environ.get("LOAN_DB_URL", ""))
    args = parser.parse_args(argv)

    db_url = (args.db_url or "").strip()
    if not db_url:
        print("LOAN_DB_URL is not set. Provide --db-url or export env first.")
        return 2

    try:
        engine = _get_engine(db_url)
        _scalar(engine, "SELECT 1")
    except Exception as exc:
        print(f"Could not connect to DB: {exc}")
        return 3

    column_checks = run_column_checks(engine)
    _print_results("Column Checks", column_checks)
    _print_row_counts(engine)
    if not all(check.ok for check in column_checks):
        return 1

    with Session(engine) as db:
        integrity = run_integrity_checks(db)
        _print_results("Integrity Checks", integrity)
        _print_status_counts(db)
    return 0 if all(check.ok for check in integrity) else 1


if __name__ == "__main__":
    sys.exit(main())
