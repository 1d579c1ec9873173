# tablecraft/services/data_source.py
import logging
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, Field
from sqlalchemy import MetaData, String, Table, and_, cast, func, or_, select
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, NoSuchTableError, SQLAlchemyError
from sqlalchemy.orm import Session

from tablecraft.compiler.columns import ResolvedColumns
from tablecraft.core.exceptions import ConfigurationError, DataSourceUnavailableError
from tablecraft.models.descriptor import FilterSpec, OrderBy, PagingRequest, RelationSpec

logger = logging.getLogger(__name__)


class QueryResult(BaseModel):
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    total: int = 0
    filtered: int = 0


def jsonable(value: Any) -> Any:
    """Values orjson and the grid both accept"""
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def split_foreign_key(foreign_key: Dict[str, str], table_name: str) -> Optional[Tuple[str, str, str]]:
    """
    Return (local_column, related_table, related_column) for a
    {"<related_table>.<key>": "<table>.<column>"} mapping.
    """
    for left, right in foreign_key.items():
        left_table, _, left_col = left.rpartition(".")
        right_table, _, right_col = right.rpartition(".")
        if right_table in ("", table_name) and left_table:
            return right_col, left_table, left_col
        if left_table in ("", table_name) and right_table:
            return left_col, right_table, right_col
    return None


class DataSource:
    """SQLAlchemy Core query layer for one base table"""

    def __init__(self, bind: Union[Connection, Session], table_name: str):
        self.conn = bind.connection() if isinstance(bind, Session) else bind
        self.table_name = table_name
        self.metadata = MetaData()
        self._tables: Dict[str, Table] = {}
        self._queries = 0

    def table(self, name: str) -> Table:
        if name not in self._tables:
            try:
                self._tables[name] = Table(name, self.metadata, autoload_with=self.conn)
            except NoSuchTableError as e:
                raise ConfigurationError(f"Unknown table: {name}") from e
            except DBAPIError as e:
                raise DataSourceUnavailableError(f"Cannot reflect table {name}: {str(e)}") from e
        return self._tables[name]

    @property
    def base(self) -> Table:
        return self.table(self.table_name)

    def columns(self) -> List[str]:
        return [column.name for column in self.base.columns]

    def _joins(self, resolved: ResolvedColumns, relations: Sequence[RelationSpec]):
        """Build LEFT JOINs and labeled display columns for the used relations"""
        base = self.base
        from_clause = base
        labeled = {}
        used = resolved.relation_meta.relations
        for relation in relations:
            if relation.alias_field not in used:
                continue
            parts = split_foreign_key(relation.foreign_key, self.table_name)
            if parts is None:
                logger.warning(f"Relation '{relation.alias_field}' has no usable foreign key, skipping join")
                continue
            local_col, related_name, related_col = parts
            display_col = relation.display_field.rpartition(".")[2]
            try:
                related = self.table(related_name).alias(f"rel_{relation.alias_field}")
                condition = related.c[related_col] == base.c[local_col]
                display = related.c[display_col]
            except (ConfigurationError, KeyError) as e:
                logger.warning(f"Relation '{relation.alias_field}' cannot be joined: {str(e)}")
                continue
            from_clause = from_clause.outerjoin(related, condition)
            labeled[relation.display_field] = display
        return from_clause, labeled

    def _expression(self, field: str, labeled: Dict[str, Any]):
        if field in labeled:
            return labeled[field]
        if field in self.base.c:
            return self.base.c[field]
        return None

    def _filter_clause(self, spec: FilterSpec, labeled: Dict[str, Any]):
        column = self._expression(spec.field, labeled)
        if column is None:
            logger.warning(f"Filter field '{spec.field}' not found in table schema")
            return None

        op, value = spec.operator, spec.value
        as_text = cast(column, String)
        if op == "equals":
            return column == value
        if op == "notEqual":
            return column != value
        if op == "contains":
            return as_text.like(f"%{value}%")
        if op == "startsWith":
            return as_text.like(f"{value}%")
        if op == "endsWith":
            return as_text.like(f"%{value}")
        if op == "greaterThan":
            return column > value
        if op == "lessThan":
            return column < value
        if op == "greaterThanOrEqual":
            return column >= value
        if op == "lessThanOrEqual":
            return column <= value
        if op == "blank":
            return or_(column.is_(None), as_text == "")
        if op == "notBlank":
            return and_(column.isnot(None), as_text != "")
        if op == "in":
            values = list(value) if isinstance(value, (list, tuple, set)) else [value]
            return column.in_(values)
        if op == "inRange":
            low, high = _range_bounds(value)
            clauses = []
            if low is not None:
                clauses.append(column >= low)
            if high is not None:
                clauses.append(column <= high)
            return and_(*clauses) if clauses else None
        return None

    def _search_clauses(self, resolved: ResolvedColumns, paging: PagingRequest,
                        labeled: Dict[str, Any], exclude_search: Sequence[str]):
        clauses = []
        if paging.search_term:
            term = f"%{paging.search_term}%"
            candidates = [
                self._expression(field, labeled) for field in resolved.ordered
                if field not in exclude_search
            ]
            conditions = [cast(column, String).ilike(term) for column in candidates if column is not None]
            if conditions:
                clauses.append(or_(*conditions))

        for field, value in paging.column_searches.items():
            column = self._expression(field, labeled)
            if column is not None:
                clauses.append(cast(column, String).ilike(f"%{value}%"))
        return clauses

    def _order(self, resolved: ResolvedColumns, paging: PagingRequest, labeled: Dict[str, Any],
               order_by: Optional[OrderBy], exclude_sort: Sequence[str]):
        field, direction = None, "asc"
        idx = paging.order_column_index
        if idx is not None and 0 <= idx < len(resolved.ordered):
            candidate = resolved.ordered[idx]
            if candidate not in exclude_sort and self._expression(candidate, labeled) is not None:
                field, direction = candidate, paging.order_direction
        if field is None and order_by is not None and self._expression(order_by.column, labeled) is not None:
            field, direction = order_by.column, order_by.direction
        if field is None:
            primary = [column for column in self.base.primary_key.columns]
            if primary:
                return [primary[0].asc()]
            return []
        column = self._expression(field, labeled)
        return [column.desc() if direction == "desc" else column.asc()]

    def fetch(
            self,
            resolved: ResolvedColumns,
            paging: PagingRequest,
            relations: Sequence[RelationSpec] = (),
            filters: Sequence[FilterSpec] = (),
            order_by: Optional[OrderBy] = None,
            exclude_search: Sequence[str] = (),
            exclude_sort: Sequence[str] = ()
    ) -> QueryResult:
        """Total count, filtered count and one page of rows"""
        try:
            from_clause, labeled = self._joins(resolved, relations)

            base_clauses = [c for c in (self._filter_clause(spec, labeled) for spec in filters) if c is not None]
            search_clauses = self._search_clauses(resolved, paging, labeled, exclude_search)

            total_query = select(func.count()).select_from(from_clause)
            if base_clauses:
                total_query = total_query.where(*base_clauses)
            total = self.conn.execute(total_query).scalar() or 0

            if search_clauses:
                filtered_query = total_query.where(*search_clauses)
                filtered = self.conn.execute(filtered_query).scalar() or 0
            else:
                filtered = total

            data_query = select(
                *self.base.columns,
                *[column.label(name) for name, column in labeled.items()]
            ).select_from(from_clause)
            if base_clauses or search_clauses:
                data_query = data_query.where(*base_clauses, *search_clauses)
            data_query = data_query.order_by(*self._order(resolved, paging, labeled, order_by, exclude_sort))
            data_query = data_query.offset(paging.start).limit(paging.length)

            result = self.conn.execute(data_query)
            rows = [{str(key): jsonable(value) for key, value in row._mapping.items()} for row in result]
            self._queries += 3 if search_clauses else 2
        except (ConfigurationError, DataSourceUnavailableError):
            raise
        except SQLAlchemyError as e:
            logger.error(f"Data source query failed for {self.table_name}: {str(e)}")
            raise DataSourceUnavailableError(str(e)) from e

        return QueryResult(rows=rows, total=total, filtered=filtered)

    def diagnostics(self) -> Dict[str, Any]:
        return {"table": self.table_name, "queries": self._queries, "reflected": sorted(self._tables)}


def _range_bounds(value: Any) -> Tuple[Any, Any]:
    if isinstance(value, dict):
        return value.get("from"), value.get("to")
    if isinstance(value, (list, tuple)) and len(value) == 2:
        return value[0], value[1]
    return None, None
