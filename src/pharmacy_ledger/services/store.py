"""Store command interface and its SQLAlchemy implementation.

Every cascade engine talks to the data store through four filtered commands:

- ``select(table, filters) -> rows``
- ``insert(table, row) -> row``
- ``update(table, filters, fields) -> affected_count``
- ``delete(table, filters) -> affected_count``

Each command runs in its own ``session_scope()`` and commits on its own.
Commands cannot be grouped into one transaction. Callers order their commands
so that a partially applied sequence can be re-run safely.

Filters are either a mapping of column -> value (all equality tests, ANDed)
or a sequence of :class:`Condition` objects:

    >>> store.select("purchase_items", [lt("expiry_date", cutoff)], order_by=["expiry_date"])
    >>> store.delete("current_inventory", {"medicine_id": 3, "batch_number": "B1",
    ...                                    "expiry_date": date(2025, 1, 1)})
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence, Union

from sqlalchemy import MetaData, Table, delete, insert, select, update
from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError

from ..models.base import Base
from .database import session_scope
from .exceptions import StoreError, TableMissing

_OPERATORS = ("eq", "neq", "lt", "lte", "gt", "gte", "in", "not_null")

_MISSING_TABLE_MARKERS = ("no such table", "does not exist", "could not find the table")


@dataclass(frozen=True)
class Condition:
    """One filter predicate: ``column <op> value``."""

    column: str
    value: Any = None
    op: str = "eq"

    def __post_init__(self) -> None:
        """Validate the operator."""
        if self.op not in _OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")


def eq(column: str, value: Any) -> Condition:
    return Condition(column, value, "eq")


def neq(column: str, value: Any) -> Condition:
    return Condition(column, value, "neq")


def lt(column: str, value: Any) -> Condition:
    return Condition(column, value, "lt")


def gte(column: str, value: Any) -> Condition:
    return Condition(column, value, "gte")


def in_(column: str, values: Iterable[Any]) -> Condition:
    return Condition(column, tuple(values), "in")


def not_null(column: str) -> Condition:
    return Condition(column, None, "not_null")


Filters = Union[Mapping[str, Any], Sequence[Condition]]


class Store(Protocol):
    """The command interface the cascade engines are written against."""

    def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    def update(self, table: str, filters: Filters, fields: Mapping[str, Any]) -> int:
        ...

    def delete(self, table: str, filters: Filters) -> int:
        ...


def _as_conditions(filters: Optional[Filters]) -> List[Condition]:
    """Normalize a filter mapping or sequence into a list of conditions."""
    if not filters:
        return []
    if isinstance(filters, Mapping):
        return [Condition(column, value) for column, value in filters.items()]
    return list(filters)


def _is_missing_table(error: Exception) -> bool:
    message = str(getattr(error, "orig", None) or error).lower()
    return any(marker in message for marker in _MISSING_TABLE_MARKERS)


class SqlStore:
    """
    Store implementation on SQLAlchemy Core.

    Tables are looked up by name in the declarative metadata. Driver errors
    are translated into :class:`StoreError`, and "table does not exist"
    errors into :class:`TableMissing`.

    Args:
        metadata: Table metadata to resolve names against (default: model metadata)
    """

    def __init__(self, metadata: Optional[MetaData] = None):
        self._metadata = metadata if metadata is not None else Base.metadata

    def _table(self, name: str) -> Table:
        table = self._metadata.tables.get(name)
        if table is None:
            raise TableMissing(name)
        return table

    def _where(self, table: Table, filters: Optional[Filters]) -> list:
        clauses = []
        for condition in _as_conditions(filters):
            if condition.column not in table.c:
                raise StoreError(f"Unknown column '{condition.column}' on table '{table.name}'")
            column = table.c[condition.column]
            op = condition.op
            if op == "eq":
                clauses.append(column.is_(None) if condition.value is None else column == condition.value)
            elif op == "neq":
                clauses.append(column.is_not(None) if condition.value is None else column != condition.value)
            elif op == "lt":
                clauses.append(column < condition.value)
            elif op == "lte":
                clauses.append(column <= condition.value)
            elif op == "gt":
                clauses.append(column > condition.value)
            elif op == "gte":
                clauses.append(column >= condition.value)
            elif op == "in":
                clauses.append(column.in_(list(condition.value)))
            else:
                clauses.append(column.is_not(None))
        return clauses

    def _run(self, table_name: str, action: str, work: Callable) -> Any:
        try:
            with session_scope() as session:
                return work(session)
        except StoreError:
            raise
        except (OperationalError, ProgrammingError) as e:
            if _is_missing_table(e):
                raise TableMissing(table_name, original_error=e)
            raise StoreError(f"Failed to {action} {table_name}", original_error=e)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to {action} {table_name}", original_error=e)

    def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[Sequence[str]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Return matching rows as plain dictionaries.

        Args:
            table: Table name
            filters: Equality mapping or condition sequence (None = all rows)
            columns: Optional subset of columns to return
            order_by: Column names; prefix with "-" for descending
            limit: Optional maximum number of rows
        """
        target = self._table(table)
        if columns:
            stmt = select(*[target.c[name] for name in columns])
        else:
            stmt = select(target)
        stmt = stmt.where(*self._where(target, filters))
        for name in order_by or []:
            if name.startswith("-"):
                stmt = stmt.order_by(target.c[name[1:]].desc())
            else:
                stmt = stmt.order_by(target.c[name].asc())
        if limit is not None:
            stmt = stmt.limit(limit)

        def work(session):
            return [dict(row) for row in session.execute(stmt).mappings().all()]

        return self._run(table, "select from", work)

    def insert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored (defaults and triggers applied)."""
        target = self._table(table)

        def work(session):
            result = session.execute(insert(target).values(**dict(row)))
            primary_key = result.inserted_primary_key[0]
            stored = session.execute(
                select(target).where(target.c.id == primary_key)
            ).mappings().one()
            return dict(stored)

        return self._run(table, "insert into", work)

    def update(self, table: str, filters: Filters, fields: Mapping[str, Any]) -> int:
        """
        Update every row matching ``filters``.

        Returns:
            Number of rows affected (0 when nothing matched)

        Raises:
            ValueError: If no filter is given
        """
        target = self._table(table)
        clauses = self._where(target, filters)
        if not clauses:
            raise ValueError("update() requires at least one filter condition")
        if not fields:
            return 0
        stmt = update(target).where(*clauses).values(**dict(fields))
        return self._run(table, "update", lambda session: session.execute(stmt).rowcount)

    def delete(self, table: str, filters: Filters) -> int:
        """
        Delete every row matching ``filters``.

        Returns:
            Number of rows deleted (0 when nothing matched)

        Raises:
            ValueError: If no filter is given
        """
        target = self._table(table)
        clauses = self._where(target, filters)
        if not clauses:
            raise ValueError("delete() requires at least one filter condition")
        stmt = delete(target).where(*clauses)
        return self._run(table, "delete from", lambda session: session.execute(stmt).rowcount)
