# tablecraft/services/legacy_compiler.py
import logging
import time
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

from sqlalchemy import inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.exc import DBAPIError, NoSuchTableError, SQLAlchemyError
from sqlalchemy.orm import Session

from tablecraft.compiler import formula as formula_engine
from tablecraft.compiler.actions import ActionResolver, resolve_base_path
from tablecraft.compiler.columns import ACTION_COLUMN, NUMBER_COLUMN, RelationMeta, apply_relations, place_formulas
from tablecraft.compiler.context import CompilationContext
from tablecraft.compiler.formatter import STATUS_FIELDS, ImageRenderer, format_number, looks_like_image, render_status
from tablecraft.compiler.response import CLICKABLE_CLASS, encode_id
from tablecraft.core.exceptions import ConfigurationError, DataSourceUnavailableError, FormatError
from tablecraft.models.descriptor import RelationSpec

logger = logging.getLogger(__name__)


def _q(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def compile_legacy(
        db: Union[Session, Connection],
        context: CompilationContext,
        asset_root: Optional[Union[str, Path]] = None,
        relation_catalog: Sequence[RelationSpec] = ()
) -> Dict[str, Any]:
    """
    Compile one grid request in a single pass: raw SQL, inline formatting and
    inline action buttons. Returns the DataTables payload.
    """
    start_time = time.time()
    descriptor = context.descriptor
    if descriptor is None or not context.table_name:
        raise ConfigurationError("No table descriptor to compile")

    table = descriptor.name
    paging = context.paging
    conn = db.connection() if isinstance(db, Session) else db

    # Table structure
    try:
        inspector = inspect(conn)
        table_columns = [col["name"] for col in inspector.get_columns(table)]
        pk_columns = inspector.get_pk_constraint(table).get("constrained_columns") or []
    except NoSuchTableError as e:
        raise ConfigurationError(f"Unknown table: {table}") from e
    except DBAPIError as e:
        raise DataSourceUnavailableError(f"Cannot read table structure: {str(e)}") from e

    using_sqlite = conn.dialect.name == "sqlite"

    # Columns: requested fields framed by numbering and action columns
    requested = [f for f in descriptor.field_names if f not in (NUMBER_COLUMN, ACTION_COLUMN)]
    if descriptor.numbering:
        requested.insert(0, NUMBER_COLUMN)
    if descriptor.actions.enabled:
        requested.append(ACTION_COLUMN)

    relations = {r.alias_field: r for r in relation_catalog}
    relations.update({r.alias_field: r for r in descriptor.relations})

    labels = {c.field: c.display_label for c in descriptor.columns}
    meta = RelationMeta()
    fields = [f for f in requested if f in table_columns or f in (NUMBER_COLUMN, ACTION_COLUMN)]
    fields = apply_relations(fields, requested, list(relations.values()), labels, meta)
    fields = place_formulas(fields, descriptor.formulas)
    formulas = {f.name: f for f in descriptor.formulas}

    # Joins for relation display columns
    join_sql = ""
    select_extra = []
    expressions = {col: f"{_q(table)}.{_q(col)}" for col in table_columns}
    for alias in meta.relations:
        relation = relations[alias]
        local_col = related = related_col = None
        for left, right in relation.foreign_key.items():
            left_table, _, left_field = left.rpartition(".")
            right_table, _, right_field = right.rpartition(".")
            if right_table in ("", table) and left_table:
                local_col, related, related_col = right_field, left_table, left_field
                break
            if left_table in ("", table) and right_table:
                local_col, related, related_col = left_field, right_table, right_field
                break
        if not related:
            logger.warning(f"Relation '{alias}' has no usable foreign key, skipping join")
            continue
        try:
            related_columns = [col["name"] for col in inspector.get_columns(related)]
        except NoSuchTableError:
            logger.warning(f"Relation '{alias}' cannot be joined: unknown table {related}")
            continue
        display_col = relation.display_field.rpartition(".")[2]
        if display_col not in related_columns or related_col not in related_columns or local_col not in table_columns:
            logger.warning(f"Relation '{alias}' cannot be joined: missing column")
            continue
        join_alias = _q(f"rel_{alias}")
        join_sql += (
            f" LEFT JOIN {_q(related)} AS {join_alias}"
            f" ON {join_alias}.{_q(related_col)} = {_q(table)}.{_q(local_col)}"
        )
        expressions[relation.display_field] = f"{join_alias}.{_q(display_col)}"
        select_extra.append(f"{join_alias}.{_q(display_col)} AS {_q(relation.display_field)}")

    text_cast = "TEXT"
    where_clauses = []
    query_params: Dict[str, Any] = {}

    # Descriptor and request filters
    filter_idx = 0
    for spec in context.filters:
        column = expressions.get(spec.field)
        if column is None:
            logger.warning(f"Filter field '{spec.field}' not found in table schema")
            continue

        filter_type = spec.operator
        filter_value = spec.value
        param_name = f"filter_{filter_idx}"

        if filter_type == 'equals':
            where_clauses.append(f"{column} = :{param_name}")
            query_params[param_name] = filter_value
        elif filter_type == 'notEqual':
            where_clauses.append(f"{column} != :{param_name}")
            query_params[param_name] = filter_value
        elif filter_type == 'contains':
            where_clauses.append(f"CAST({column} AS {text_cast}) LIKE :{param_name}")
            query_params[param_name] = f"%{filter_value}%"
        elif filter_type == 'startsWith':
            where_clauses.append(f"CAST({column} AS {text_cast}) LIKE :{param_name}")
            query_params[param_name] = f"{filter_value}%"
        elif filter_type == 'endsWith':
            where_clauses.append(f"CAST({column} AS {text_cast}) LIKE :{param_name}")
            query_params[param_name] = f"%{filter_value}"
        elif filter_type == 'greaterThan':
            where_clauses.append(f"{column} > :{param_name}")
            query_params[param_name] = filter_value
        elif filter_type == 'lessThan':
            where_clauses.append(f"{column} < :{param_name}")
            query_params[param_name] = filter_value
        elif filter_type == 'greaterThanOrEqual':
            where_clauses.append(f"{column} >= :{param_name}")
            query_params[param_name] = filter_value
        elif filter_type == 'lessThanOrEqual':
            where_clauses.append(f"{column} <= :{param_name}")
            query_params[param_name] = filter_value
        elif filter_type == 'blank':
            where_clauses.append(f"({column} IS NULL OR CAST({column} AS {text_cast}) = '')")
        elif filter_type == 'notBlank':
            where_clauses.append(f"({column} IS NOT NULL AND CAST({column} AS {text_cast}) != '')")
        elif filter_type == 'in':
            values = list(filter_value) if isinstance(filter_value, (list, tuple, set)) else [filter_value]
            names = []
            for i, value in enumerate(values):
                names.append(f":{param_name}_{i}")
                query_params[f"{param_name}_{i}"] = value
            where_clauses.append(f"{column} IN ({', '.join(names)})" if names else "1 = 0")
        elif filter_type == 'inRange':
            if isinstance(filter_value, dict):
                from_value, to_value = filter_value.get('from'), filter_value.get('to')
            elif isinstance(filter_value, (list, tuple)) and len(filter_value) == 2:
                from_value, to_value = filter_value
            else:
                from_value = to_value = None
            if from_value is not None:
                where_clauses.append(f"{column} >= :{param_name}_from")
                query_params[f"{param_name}_from"] = from_value
            if to_value is not None:
                where_clauses.append(f"{column} <= :{param_name}_to")
                query_params[f"{param_name}_to"] = to_value
        filter_idx += 1

    base_where = list(where_clauses)

    # Global and per-column search
    unsearchable = [c.field for c in descriptor.columns if not c.searchable]
    unsearchable += [meta.relations[a]["display_field"] for a in meta.relations if a in unsearchable]

    def like(column, param):
        if using_sqlite:
            return f"LOWER(CAST({column} AS {text_cast})) LIKE LOWER(:{param})"
        return f"CAST({column} AS {text_cast}) ILIKE :{param}"

    if paging.search_term:
        search_conditions = [
            like(expressions[f], "search_value") for f in fields
            if f in expressions and f not in unsearchable
        ]
        if search_conditions:
            where_clauses.append(f"({' OR '.join(search_conditions)})")
            query_params["search_value"] = f"%{paging.search_term}%"

    for i, (field, value) in enumerate(paging.column_searches.items()):
        if field in expressions:
            where_clauses.append(like(expressions[field], f"col_search_{i}"))
            query_params[f"col_search_{i}"] = f"%{value}%"

    from_sql = f"{_q(table)}{join_sql}"
    base_where_sql = f" WHERE {' AND '.join(base_where)}" if base_where else ""
    where_sql = f" WHERE {' AND '.join(where_clauses)}" if where_clauses else ""

    # Sorting
    unsortable = [c.field for c in descriptor.columns if not c.sortable]
    unsortable += [meta.relations[a]["display_field"] for a in meta.relations if a in unsortable]
    order_sql = ""
    idx = paging.order_column_index
    if idx is not None and 0 <= idx < len(fields) and fields[idx] in expressions and fields[idx] not in unsortable:
        direction = "DESC" if paging.order_direction == "desc" else "ASC"
        order_sql = f" ORDER BY {expressions[fields[idx]]} {direction}"
    elif descriptor.order_by is not None and descriptor.order_by.column in expressions:
        direction = "DESC" if descriptor.order_by.direction == "desc" else "ASC"
        order_sql = f" ORDER BY {expressions[descriptor.order_by.column]} {direction}"
    elif pk_columns:
        order_sql = f" ORDER BY {_q(table)}.{_q(pk_columns[0])} ASC"

    try:
        count_sql = f"SELECT COUNT(*) FROM {from_sql}{base_where_sql}"
        total_rows = conn.execute(text(count_sql), query_params).scalar() or 0

        if where_sql != base_where_sql:
            filtered_sql = f"SELECT COUNT(*) FROM {from_sql}{where_sql}"
            filtered_rows = conn.execute(text(filtered_sql), query_params).scalar() or 0
        else:
            filtered_rows = total_rows

        select_sql = ", ".join([f"{_q(table)}.*"] + select_extra)
        data_sql = f"SELECT {select_sql} FROM {from_sql}{where_sql}{order_sql} LIMIT :limit OFFSET :offset"
        query_params["limit"] = paging.length
        query_params["offset"] = paging.start
        result = conn.execute(text(data_sql), query_params)
        raw_rows = result.fetchall()
    except SQLAlchemyError as e:
        logger.error(f"Legacy query failed for {table}: {str(e)}")
        raise DataSourceUnavailableError(str(e)) from e

    # Action buttons
    action_resolver = ActionResolver()
    buttons = []
    base_path = ""
    if descriptor.actions.enabled:
        buttons = action_resolver.resolve(
            context.privilege_roles,
            descriptor.actions.enabled_verbs,
            descriptor.actions.removed_verbs,
            descriptor.actions.custom_buttons,
            route_name=context.route.route_name,
            role_group=context.role_group
        )
        base_path = resolve_base_path(context.route)

    images = ImageRenderer(asset_root)
    image_hints = {c.field for c in descriptor.columns if c.image_hint}
    rules = {r.field: r for r in descriptor.format_rules}

    data = []
    for i, raw in enumerate(raw_rows):
        row = {}
        for key, value in raw._mapping.items():
            if isinstance(value, (datetime, date)):
                row[str(key)] = value.isoformat()
            elif isinstance(value, Decimal):
                row[str(key)] = float(value)
            elif isinstance(value, bytes):
                row[str(key)] = value.decode("utf-8", errors="replace")
            else:
                row[str(key)] = value

        item = {}
        for field in fields:
            if field in formulas:
                value = formula_engine.evaluate(formulas[field], row)
            else:
                value = row.get(field)
                if field in STATUS_FIELDS:
                    item[field] = render_status(field, value)
                    continue
                if (field in image_hints or row.get(f"{field}_thumb") not in (None, "")
                        or looks_like_image(value)):
                    item[field] = images.render(field, value, row)
                    continue

            rule = rules.get(field)
            if rule is not None and value is not None and value != "":
                try:
                    value = format_number(value, rule.decimals, rule.separator, rule.format_type)
                except FormatError:
                    value = ""
            item[field] = value

        if descriptor.numbering:
            item["DT_RowIndex"] = paging.start + i + 1
            if NUMBER_COLUMN in item:
                item[NUMBER_COLUMN] = paging.start + i + 1

        if descriptor.actions.enabled:
            item["action"] = action_resolver.render(
                buttons, row, base_path, descriptor.url_target_field, descriptor.soft_delete_field
            )

        if descriptor.clickable:
            attributes = {"class": CLICKABLE_CLASS}
            rlp = encode_id(row.get(descriptor.url_target_field or "id"))
            if rlp is not None:
                attributes["rlp"] = rlp
            item["DT_RowAttr"] = attributes
            item["DT_RowClass"] = CLICKABLE_CLASS

        data.append(item)

    logger.info(f"Legacy compile of {table} returned {len(data)} rows out of {total_rows} in {time.time() - start_time:.3f}s")

    return {
        "draw": paging.draw,
        "recordsTotal": total_rows,
        "recordsFiltered": filtered_rows,
        "data": data,
    }
