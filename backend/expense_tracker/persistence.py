from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID, uuid4

from fastapi import HTTPException
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from .config import settings
from .logging_config import get_logger
from .schemas import (
    RecurringChargeCreate,
    RecurringChargeUpdate,
    SavingsUpdate,
    TransactionCreate,
    TransactionDirection,
    TransactionFilter,
    TransactionUpdate,
    UserSettings,
    UserSettingsUpdate,
    categories_for,
)
from .store import store

logger = get_logger("persistence")

_TRANSACTION_COLUMNS = "id, user_id, direction, amount, category, description, date, recurring_charge_id, created_at"
_RECURRING_COLUMNS = "id, user_id, amount, category, description, frequency, start_date, next_due_date, is_active, created_at"

_SETTINGS_FIELDS = {
    "currency": "currency",
    "monthlyBudget": "monthly_budget",
    "regularSavingsGoal": "regular_savings_goal",
    "regularSavingsCurrent": "regular_savings_current",
    "emergencyGoal": "emergency_goal",
    "emergencyCurrent": "emergency_current",
    "investmentGoal": "investment_goal",
    "investmentCurrent": "investment_current",
}

_TRANSACTION_UPDATE_FIELDS = {
    "direction": "direction",
    "amount": "amount",
    "category": "category",
    "description": "description",
    "occurredOn": "date",
}

_RECURRING_UPDATE_FIELDS = {
    "amount": "amount",
    "category": "category",
    "description": "description",
    "frequency": "frequency",
    "nextDueDate": "next_due_date",
    "isActive": "is_active",
}


class PersistenceError(Exception):
    pass


def _plain(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def _month_bounds(month: str) -> tuple[date, date]:
    year, mon = (int(part) for part in month.split("-"))
    start = date(year, mon, 1)
    end = date(year + 1, 1, 1) if mon == 12 else date(year, mon + 1, 1)
    return start, end


def _matches(row: dict[str, Any], filters: TransactionFilter) -> bool:
    if filters.direction is not None and row["direction"] != filters.direction.value:
        return False
    if filters.category and row["category"] != filters.category:
        return False
    if filters.month:
        start, end = _month_bounds(filters.month)
        if not (start <= row["date"] < end):
            return False
    if filters.dateFrom and row["date"] < filters.dateFrom:
        return False
    if filters.dateTo and row["date"] > filters.dateTo:
        return False
    if filters.search and filters.search.lower() not in (row.get("description") or "").lower():
        return False
    return True


def _check_category(direction: str, category: str) -> None:
    allowed = categories_for(TransactionDirection(direction))
    if category not in allowed:
        raise ValueError(f"category {category!r} is not valid for {direction}; use one of: {', '.join(allowed)}")


def _not_found(kind: str, entity_id: UUID) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{kind} not found: {entity_id}")


class TransactionRepository:
    def create_transaction(self, user_id: UUID, payload: TransactionCreate) -> dict[str, Any]:
        raise NotImplementedError

    def list_transactions(self, user_id: UUID, filters: TransactionFilter | None = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_transaction(self, user_id: UUID, transaction_id: UUID) -> dict[str, Any]:
        raise NotImplementedError

    def update_transaction(self, user_id: UUID, transaction_id: UUID, payload: TransactionUpdate) -> dict[str, Any]:
        raise NotImplementedError

    def delete_transaction(self, user_id: UUID, transaction_id: UUID) -> None:
        raise NotImplementedError


class RecurringChargeRepository:
    def create_recurring_charge(self, user_id: UUID, payload: RecurringChargeCreate) -> dict[str, Any]:
        raise NotImplementedError

    def list_recurring_charges(self, user_id: UUID) -> list[dict[str, Any]]:
        raise NotImplementedError

    def get_recurring_charge(self, user_id: UUID, charge_id: UUID) -> dict[str, Any]:
        raise NotImplementedError

    def update_recurring_charge(self, user_id: UUID, charge_id: UUID, payload: RecurringChargeUpdate) -> dict[str, Any]:
        raise NotImplementedError

    def set_recurring_charge_active(self, user_id: UUID, charge_id: UUID, is_active: bool) -> dict[str, Any]:
        raise NotImplementedError

    def delete_recurring_charge(self, user_id: UUID, charge_id: UUID) -> None:
        raise NotImplementedError

    def list_due_recurring_charges(self, as_of: date, user_id: UUID | None = None) -> list[dict[str, Any]]:
        raise NotImplementedError

    def apply_materialization(
        self,
        transaction: dict[str, Any],
        charge_id: UUID,
        expected_next_due: date,
        new_next_due: date,
    ) -> bool:
        """Insert ``transaction`` and move the charge to ``new_next_due`` in one step.

        Nothing is written, and False is returned, when the charge no longer
        exists, is paused, or its due date is no longer ``expected_next_due``.
        """
        raise NotImplementedError


class SettingsRepository:
    def get_user_settings(self, user_id: UUID) -> UserSettings:
        raise NotImplementedError

    def upsert_user_settings(self, user_id: UUID, payload: UserSettingsUpdate | SavingsUpdate) -> UserSettings:
        raise NotImplementedError


class Persistence(TransactionRepository, RecurringChargeRepository, SettingsRepository):
    backend_name = "abstract"


class InMemoryPersistence(Persistence):
    backend_name = "memory"

    def create_transaction(self, user_id: UUID, payload: TransactionCreate) -> dict[str, Any]:
        entity_id = store.make_id()
        row = {
            "id": entity_id,
            "user_id": user_id,
            "direction": payload.direction.value,
            "amount": payload.amount,
            "category": payload.category,
            "description": payload.description,
            "date": payload.occurredOn,
            "recurring_charge_id": None,
            "created_at": store.now(),
        }
        with store.lock:
            store.transactions[entity_id] = row
        return row

    def list_transactions(self, user_id: UUID, filters: TransactionFilter | None = None) -> list[dict[str, Any]]:
        filters = filters or TransactionFilter()
        rows = [t for t in store.transactions.values() if t["user_id"] == user_id and _matches(t, filters)]
        return sorted(rows, key=lambda t: (t["date"], t["created_at"]), reverse=True)

    def get_transaction(self, user_id: UUID, transaction_id: UUID) -> dict[str, Any]:
        row = store.transactions.get(transaction_id)
        if not row or row["user_id"] != user_id:
            raise _not_found("transaction", transaction_id)
        return row

    def update_transaction(self, user_id: UUID, transaction_id: UUID, payload: TransactionUpdate) -> dict[str, Any]:
        with store.lock:
            row = self.get_transaction(user_id, transaction_id).copy()
            for field_name, value in payload.model_dump(exclude_none=True).items():
                row[_TRANSACTION_UPDATE_FIELDS[field_name]] = _plain(value)
            _check_category(row["direction"], row["category"])
            store.transactions[transaction_id] = row
        return row

    def delete_transaction(self, user_id: UUID, transaction_id: UUID) -> None:
        with store.lock:
            self.get_transaction(user_id, transaction_id)
            del store.transactions[transaction_id]

    def create_recurring_charge(self, user_id: UUID, payload: RecurringChargeCreate) -> dict[str, Any]:
        entity_id = store.make_id()
        row = {
            "id": entity_id,
            "user_id": user_id,
            "amount": payload.amount,
            "category": payload.category,
            "description": payload.description,
            "frequency": payload.frequency.value,
            "start_date": payload.startDate,
            "next_due_date": payload.nextDueDate or payload.startDate,
            "is_active": True,
            "created_at": store.now(),
        }
        with store.lock:
            store.recurring_charges[entity_id] = row
        return row

    def list_recurring_charges(self, user_id: UUID) -> list[dict[str, Any]]:
        rows = [c for c in store.recurring_charges.values() if c["user_id"] == user_id]
        return sorted(rows, key=lambda c: (c["next_due_date"], c["created_at"]))

    def get_recurring_charge(self, user_id: UUID, charge_id: UUID) -> dict[str, Any]:
        row = store.recurring_charges.get(charge_id)
        if not row or row["user_id"] != user_id:
            raise _not_found("recurring charge", charge_id)
        return row

    def update_recurring_charge(self, user_id: UUID, charge_id: UUID, payload: RecurringChargeUpdate) -> dict[str, Any]:
        with store.lock:
            row = self.get_recurring_charge(user_id, charge_id).copy()
            for field_name, value in payload.model_dump(exclude_none=True).items():
                row[_RECURRING_UPDATE_FIELDS[field_name]] = _plain(value)
            if row["next_due_date"] < row["start_date"]:
                raise ValueError("nextDueDate must be >= startDate")
            store.recurring_charges[charge_id] = row
        return row

    def set_recurring_charge_active(self, user_id: UUID, charge_id: UUID, is_active: bool) -> dict[str, Any]:
        with store.lock:
            row = self.get_recurring_charge(user_id, charge_id).copy()
            row["is_active"] = is_active
            store.recurring_charges[charge_id] = row
        return row

    def delete_recurring_charge(self, user_id: UUID, charge_id: UUID) -> None:
        with store.lock:
            self.get_recurring_charge(user_id, charge_id)
            del store.recurring_charges[charge_id]

    def list_due_recurring_charges(self, as_of: date, user_id: UUID | None = None) -> list[dict[str, Any]]:
        return [
            dict(c)
            for c in store.recurring_charges.values()
            if c["is_active"] and c["next_due_date"] <= as_of and (user_id is None or c["user_id"] == user_id)
        ]

    def apply_materialization(
        self,
        transaction: dict[str, Any],
        charge_id: UUID,
        expected_next_due: date,
        new_next_due: date,
    ) -> bool:
        with store.lock:
            charge = store.recurring_charges.get(charge_id)
            if not charge or not charge["is_active"] or charge["next_due_date"] != expected_next_due:
                return False
            row = {**transaction, "created_at": store.now()}
            store.transactions[row["id"]] = row
            store.recurring_charges[charge_id] = {**charge, "next_due_date": new_next_due}
        return True

    def get_user_settings(self, user_id: UUID) -> UserSettings:
        return UserSettings(**store.user_settings.get(user_id, {}))

    def upsert_user_settings(self, user_id: UUID, payload: UserSettingsUpdate | SavingsUpdate) -> UserSettings:
        with store.lock:
            current = store.user_settings.get(user_id, {})
            store.user_settings[user_id] = {**current, **payload.model_dump(exclude_none=True)}
            return UserSettings(**store.user_settings[user_id])


class PostgresPersistence(Persistence):
    backend_name = "postgres"

    def __init__(self, database_url: str) -> None:
        self.engine: Engine = create_engine(database_url, future=True, pool_pre_ping=True)

    def _run(self, sql: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(text(sql), params or {})
                if result.returns_rows:
                    return [dict(row._mapping) for row in result.fetchall()]
                return []
        except SQLAlchemyError as exc:
            logger.error("Database query failed", extra={"error": exc.__class__.__name__})
            raise PersistenceError(f"postgres error: {exc.__class__.__name__}") from exc

    def create_transaction(self, user_id: UUID, payload: TransactionCreate) -> dict[str, Any]:
        return self._run(
            f"""
            insert into transactions (id, user_id, direction, amount, category, description, date)
            values (:id, :user_id, :direction, :amount, :category, :description, :date)
            returning {_TRANSACTION_COLUMNS}
            """,
            {
                "id": uuid4(),
                "user_id": user_id,
                "direction": payload.direction.value,
                "amount": payload.amount,
                "category": payload.category,
                "description": payload.description,
                "date": payload.occurredOn,
            },
        )[0]

    def list_transactions(self, user_id: UUID, filters: TransactionFilter | None = None) -> list[dict[str, Any]]:
        filters = filters or TransactionFilter()
        clauses = ["user_id = :user_id"]
        params: dict[str, Any] = {"user_id": user_id}
        if filters.direction is not None:
            clauses.append("direction = :direction")
            params["direction"] = filters.direction.value
        if filters.category:
            clauses.append("category = :category")
            params["category"] = filters.category
        if filters.month:
            month_start, month_end = _month_bounds(filters.month)
            clauses.append("date >= :month_start and date < :month_end")
            params.update(month_start=month_start, month_end=month_end)
        if filters.dateFrom:
            clauses.append("date >= :date_from")
            params["date_from"] = filters.dateFrom
        if filters.dateTo:
            clauses.append("date <= :date_to")
            params["date_to"] = filters.dateTo
        if filters.search:
            clauses.append("description ilike :search")
            params["search"] = f"%{filters.search}%"
        return self._run(
            f"""
            select {_TRANSACTION_COLUMNS}
            from transactions
            where {' and '.join(clauses)}
            order by date desc, created_at desc
            """,
            params,
        )

    def get_transaction(self, user_id: UUID, transaction_id: UUID) -> dict[str, Any]:
        rows = self._run(
            f"select {_TRANSACTION_COLUMNS} from transactions where id = :id and user_id = :user_id",
            {"id": transaction_id, "user_id": user_id},
        )
        if not rows:
            raise _not_found("transaction", transaction_id)
        return rows[0]

    def update_transaction(self, user_id: UUID, transaction_id: UUID, payload: TransactionUpdate) -> dict[str, Any]:
        updates = {_TRANSACTION_UPDATE_FIELDS[k]: _plain(v) for k, v in payload.model_dump(exclude_none=True).items()}
        current = self.get_transaction(user_id, transaction_id)
        if not updates:
            return current
        merged = {**current, **updates}
        _check_category(merged["direction"], merged["category"])
        assignments = ", ".join(f"{column} = :{column}" for column in updates)
        rows = self._run(
            f"""
            update transactions set {assignments}, updated_at = now()
            where id = :id and user_id = :user_id
            returning {_TRANSACTION_COLUMNS}
            """,
            {**updates, "id": transaction_id, "user_id": user_id},
        )
        if not rows:
            raise _not_found("transaction", transaction_id)
        return rows[0]

    def delete_transaction(self, user_id: UUID, transaction_id: UUID) -> None:
        rows = self._run(
            "delete from transactions where id = :id and user_id = :user_id returning id",
            {"id": transaction_id, "user_id": user_id},
        )
        if not rows:
            raise _not_found("transaction", transaction_id)

    def create_recurring_charge(self, user_id: UUID, payload: RecurringChargeCreate) -> dict[str, Any]:
        return self._run(
            f"""
            insert into recurring_charges (id, user_id, amount, category, description, frequency, start_date, next_due_date, is_active)
            values (:id, :user_id, :amount, :category, :description, :frequency, :start_date, :next_due_date, true)
            returning {_RECURRING_COLUMNS}
            """,
            {
                "id": uuid4(),
                "user_id": user_id,
                "amount": payload.amount,
                "category": payload.category,
                "description": payload.description,
                "frequency": payload.frequency.value,
                "start_date": payload.startDate,
                "next_due_date": payload.nextDueDate or payload.startDate,
            },
        )[0]

    def list_recurring_charges(self, user_id: UUID) -> list[dict[str, Any]]:
        return self._run(
            f"""
            select {_RECURRING_COLUMNS}
            from recurring_charges
            where user_id = :user_id
            order by next_due_date asc, created_at asc
            """,
            {"user_id": user_id},
        )

    def get_recurring_charge(self, user_id: UUID, charge_id: UUID) -> dict[str, Any]:
        rows = self._run(
            f"select {_RECURRING_COLUMNS} from recurring_charges where id = :id and user_id = :user_id",
            {"id": charge_id, "user_id": user_id},
        )
        if not rows:
            raise _not_found("recurring charge", charge_id)
        return rows[0]

    def update_recurring_charge(self, user_id: UUID, charge_id: UUID, payload: RecurringChargeUpdate) -> dict[str, Any]:
        updates = {_RECURRING_UPDATE_FIELDS[k]: _plain(v) for k, v in payload.model_dump(exclude_none=True).items()}
        current = self.get_recurring_charge(user_id, charge_id)
        if not updates:
            return current
        if updates.get("next_due_date", current["next_due_date"]) < current["start_date"]:
            raise ValueError("nextDueDate must be >= startDate")
        assignments = ", ".join(f"{column} = :{column}" for column in updates)
        return self._run(
            f"""
            update recurring_charges set {assignments}, updated_at = now()
            where id = :id and user_id = :user_id
            returning {_RECURRING_COLUMNS}
            """,
            {**updates, "id": charge_id, "user_id": user_id},
        )[0]

    def set_recurring_charge_active(self, user_id: UUID, charge_id: UUID, is_active: bool) -> dict[str, Any]:
        rows = self._run(
            f"""
            update recurring_charges set is_active = :is_active, updated_at = now()
            where id = :id and user_id = :user_id
            returning {_RECURRING_COLUMNS}
            """,
            {"is_active": is_active, "id": charge_id, "user_id": user_id},
        )
        if not rows:
            raise _not_found("recurring charge", charge_id)
        return rows[0]

    def delete_recurring_charge(self, user_id: UUID, charge_id: UUID) -> None:
        rows = self._run(
            "delete from recurring_charges where id = :id and user_id = :user_id returning id",
            {"id": charge_id, "user_id": user_id},
        )
        if not rows:
            raise _not_found("recurring charge", charge_id)

    def list_due_recurring_charges(self, as_of: date, user_id: UUID | None = None) -> list[dict[str, Any]]:
        owner_clause = "and user_id = :user_id" if user_id is not None else ""
        return self._run(
            f"""
            select {_RECURRING_COLUMNS}
            from recurring_charges
            where is_active = true and next_due_date <= :as_of {owner_clause}
            order by next_due_date asc
            """,
            {"as_of": as_of, "user_id": user_id},
        )

    def apply_materialization(
        self,
        transaction: dict[str, Any],
        charge_id: UUID,
        expected_next_due: date,
        new_next_due: date,
    ) -> bool:
        try:
            with self.engine.begin() as conn:
                advanced = conn.execute(
                    text(
                        """
                        update recurring_charges
                        set next_due_date = :new_next_due, updated_at = now()
                        where id = :id and is_active = true and next_due_date = :expected_next_due
                        """
                    ),
                    {"id": charge_id, "new_next_due": new_next_due, "expected_next_due": expected_next_due},
                )
                if advanced.rowcount != 1:
                    return False
                conn.execute(
                    text(
                        """
                        insert into transactions (id, user_id, direction, amount, category, description, date, recurring_charge_id)
                        values (:id, :user_id, :direction, :amount, :category, :description, :date, :recurring_charge_id)
                        """
                    ),
                    transaction,
                )
        except IntegrityError:
            # occurrence already posted; the unique index rolled the pair back
            return False
        except SQLAlchemyError as exc:
            raise PersistenceError(f"postgres error: {exc.__class__.__name__}") from exc
        return True

    def get_user_settings(self, user_id: UUID) -> UserSettings:
        rows = self._run(
            f"select {', '.join(_SETTINGS_FIELDS.values())} from user_settings where user_id = :user_id",
            {"user_id": user_id},
        )
        if not rows:
            return UserSettings()
        return UserSettings(**{field_name: rows[0][column] for field_name, column in _SETTINGS_FIELDS.items()})

    def upsert_user_settings(self, user_id: UUID, payload: UserSettingsUpdate | SavingsUpdate) -> UserSettings:
        updates = {_SETTINGS_FIELDS[k]: v for k, v in payload.model_dump(exclude_none=True).items()}
        if not updates:
            return self.get_user_settings(user_id)
        columns = ", ".join(updates)
        values = ", ".join(f":{column}" for column in updates)
        assignments = ", ".join(f"{column} = excluded.{column}" for column in updates)
        self._run(
            f"""
            insert into user_settings (user_id, {columns})
            values (:user_id, {values})
            on conflict (user_id) do update set {assignments}, updated_at = now()
            """,
            {**updates, "user_id": user_id},
        )
        return self.get_user_settings(user_id)


def get_persistence() -> Persistence:
    if settings.storage_backend == "postgres":
        return PostgresPersistence(settings.database_url)
    return InMemoryPersistence()
