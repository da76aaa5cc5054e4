from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, List, Mapping

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    create_engine,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from balance.recurring_schedule import RecurringRule, normalize_frequency

metadata = MetaData()

recurring_rules = Table(
    "recurring_rules",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(128), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("amount", Integer, nullable=False),
    Column("frequency", String(20), nullable=False),
    Column("start_date", Date, nullable=False),
    Column("category", String(255)),
    Column("kind", String(20), nullable=False, default="expense"),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("end_date", Date),
    Column("last_generated", Date),
    Column("notes", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
)

transactions = Table(
    "transactions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("owner_id", String(128), nullable=False, index=True),
    Column("rule_id", Integer, ForeignKey("recurring_rules.id", ondelete="SET NULL")),
    Column("amount", Integer, nullable=False),
    Column("kind", String(20), nullable=False),
    Column("category", String(255)),
    Column("date", Date, nullable=False),
    Column("notes", String(500)),
    Column("created_at", DateTime, nullable=False, server_default=func.now()),
    UniqueConstraint("rule_id", "date", name="uq_transactions_rule_date"),
)

EDITABLE_FIELDS = (
    "name",
    "amount",
    "frequency",
    "start_date",
    "category",
    "kind",
    "end_date",
    "notes",
)
CREATE_FIELDS = EDITABLE_FIELDS + ("is_active",)

CONFLICT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


@dataclass(frozen=True)
class GeneratedTransaction:
    id: int
    rule_id: int | None
    amount: int
    kind: str
    category: str | None
    date: date
    notes: str | None = None
    created_at: datetime | None = None


def build_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, connect_args=connect_args)


class RecurringRuleRepository:
    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    def create_schema(self) -> None:
        metadata.create_all(self._engine)

    def list_for_owner(self, owner_id: str) -> List[RecurringRule]:
        with self._engine.begin() as conn:
            rows = conn.execute(
                select(recurring_rules)
                .where(recurring_rules.c.owner_id == owner_id)
                .order_by(recurring_rules.c.created_at.desc(), recurring_rules.c.id.desc())
            ).mappings().all()
        return [_rule_from_row(row) for row in rows]

    def get(self, owner_id: str, rule_id: int) -> RecurringRule | None:
        with self._engine.begin() as conn:
            row = conn.execute(
                select(recurring_rules).where(
                    recurring_rules.c.id == rule_id,
                    recurring_rules.c.owner_id == owner_id,
                )
            ).mappings().first()
        return _rule_from_row(row) if row else None

    def create(self, owner_id: str, values: Mapping[str, object]) -> RecurringRule:
        stmt = (
            insert(recurring_rules)
            .values(owner_id=owner_id, **_pick(values, CREATE_FIELDS))
            .returning(*recurring_rules.c)
        )
        with self._engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        if not row:
            raise RuntimeError("Failed to create recurring rule.")
        return _rule_from_row(row)

    def update(
        self, owner_id: str, rule_id: int, values: Mapping[str, object]
    ) -> RecurringRule | None:
        return self._update(owner_id, rule_id, _pick(values, EDITABLE_FIELDS))

    def set_active(self, owner_id: str, rule_id: int, is_active: bool) -> RecurringRule | None:
        return self._update(owner_id, rule_id, {"is_active": is_active})

    def delete(self, owner_id: str, rule_id: int) -> RecurringRule | None:
        with self._engine.begin() as conn:
            row = conn.execute(
                select(recurring_rules).where(
                    recurring_rules.c.id == rule_id,
                    recurring_rules.c.owner_id == owner_id,
                )
            ).mappings().first()
            if not row:
                return None
            conn.execute(
                update(transactions)
                .where(transactions.c.rule_id == rule_id)
                .values(rule_id=None)
            )
            conn.execute(recurring_rules.delete().where(recurring_rules.c.id == rule_id))
        return _rule_from_row(row)

    def record_generated(
        self, owner_id: str, rule: RecurringRule, dates: Iterable[date]
    ) -> List[GeneratedTransaction]:
        """Insert one transaction per date and advance ``last_generated``.

        Dates that already have a transaction for the rule, including ones a
        concurrent call inserted first, are skipped.
        """
        wanted = sorted(set(dates))
        if not wanted:
            return []
        frequency = normalize_frequency(rule.frequency)
        notes = rule.notes or f"Auto-generated - {frequency.capitalize()}"
        generated: List[GeneratedTransaction] = []
        with self._engine.begin() as conn:
            for occurrence in wanted:
                row = _insert_ignoring_duplicate(
                    conn,
                    dict(
                        owner_id=owner_id,
                        rule_id=rule.id,
                        amount=rule.amount,
                        kind=rule.kind,
                        category=rule.category,
                        date=occurrence,
                        notes=notes,
                    ),
                )
                if row is None:
                    continue
                generated.append(_transaction_from_row(row))
            conn.execute(
                update(recurring_rules)
                .where(
                    recurring_rules.c.id == rule.id,
                    recurring_rules.c.owner_id == owner_id,
                    or_(
                        recurring_rules.c.last_generated.is_(None),
                        recurring_rules.c.last_generated < wanted[-1],
                    ),
                )
                .values(last_generated=wanted[-1])
            )
        return generated

    def list_transactions(self, owner_id: str) -> List[GeneratedTransaction]:
        with self._engine.begin() as conn:
            rows = conn.execute(
                select(transactions)
                .where(transactions.c.owner_id == owner_id)
                .order_by(transactions.c.date.desc(), transactions.c.id.desc())
            ).mappings().all()
        return [_transaction_from_row(row) for row in rows]

    def _update(
        self, owner_id: str, rule_id: int, values: Mapping[str, object]
    ) -> RecurringRule | None:
        if not values:
            return self.get(owner_id, rule_id)
        stmt = (
            update(recurring_rules)
            .where(
                recurring_rules.c.id == rule_id,
                recurring_rules.c.owner_id == owner_id,
            )
            .values(**values)
            .returning(*recurring_rules.c)
        )
        with self._engine.begin() as conn:
            row = conn.execute(stmt).mappings().first()
        return _rule_from_row(row) if row else None


def _pick(values: Mapping[str, object], fields: tuple[str, ...]) -> dict:
    return {key: values[key] for key in fields if key in values}


def _insert_ignoring_duplicate(
    conn: Connection, values: Mapping[str, object]
) -> Mapping[str, object] | None:
    dialect_insert = CONFLICT_INSERTS.get(conn.dialect.name)
    if dialect_insert is not None:
        stmt = (
            dialect_insert(transactions)
            .values(**values)
            .on_conflict_do_nothing(index_elements=["rule_id", "date"])
            .returning(*transactions.c)
        )
        return conn.execute(stmt).mappings().first()
    try:
        with conn.begin_nested():
            return conn.execute(
                insert(transactions).values(**values).returning(*transactions.c)
            ).mappings().first()
    except IntegrityError:
        return None


def _rule_from_row(row: Mapping[str, object]) -> RecurringRule:
    return RecurringRule(
        id=row["id"],
        name=row["name"],
        amount=row["amount"],
        frequency=row["frequency"],
        start_date=row["start_date"],
        category=row["category"],
        kind=row["kind"],
        is_active=bool(row["is_active"]),
        end_date=row["end_date"],
        last_generated=row["last_generated"],
        notes=row["notes"],
    )


def _transaction_from_row(row: Mapping[str, object]) -> GeneratedTransaction:
    return GeneratedTransaction(
        id=row["id"],
        rule_id=row["rule_id"],
        amount=row["amount"],
        kind=row["kind"],
        category=row["category"],
        date=row["date"],
        notes=row["notes"],
        created_at=row["created_at"],
    )
