# tablecraft/compiler/context.py
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from pydantic import BaseModel, Field, ValidationError

from tablecraft.compiler.actions import RouteInfo
from tablecraft.models.descriptor import FilterSpec, PagingRequest, TableDescriptor

logger = logging.getLogger(__name__)

DEFAULT_START = 0
DEFAULT_LENGTH = 10

_INDEXED_KEY = re.compile(r"^columns\[(\d+)\]\[(\w+)\](?:\[(\w+)\])?$")


class CompilationContext(BaseModel):
    """Normalized inputs for one compile run"""
    table_name: Optional[str] = None
    descriptor: Optional[TableDescriptor] = None
    paging: PagingRequest = Field(default_factory=PagingRequest)
    filters: List[FilterSpec] = Field(default_factory=list)
    filter_page: Dict[str, Any] = Field(default_factory=dict)
    route: RouteInfo = Field(default_factory=RouteInfo)
    privilege_roles: List[str] = Field(default_factory=list)
    role_group: Optional[int] = None
    request_params: Dict[str, Any] = Field(default_factory=dict)


def _to_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default


def _nested(params: Mapping[str, Any], *path: Union[str, int]) -> Any:
    """Look up a[b][c] either as a flat bracketed key or as nested containers"""
    flat = path[0] + "".join(f"[{part}]" for part in path[1:])
    if flat in params:
        return params[flat]

    current: Any = params
    for part in path:
        if isinstance(current, Mapping):
            if part in current:
                current = current[part]
            elif str(part) in current:
                current = current[str(part)]
            else:
                return None
        elif isinstance(current, Sequence) and not isinstance(current, str) and isinstance(part, int):
            if 0 <= part < len(current):
                current = current[part]
            else:
                return None
        else:
            return None
    return current


def _column_entries(params: Mapping[str, Any]) -> List[Dict[str, Any]]:
    columns = params.get("columns")
    if isinstance(columns, Sequence) and not isinstance(columns, str):
        return [dict(column) for column in columns if isinstance(column, Mapping)]
    if isinstance(columns, Mapping):
        return [dict(columns[key]) for key in sorted(columns, key=lambda k: _to_int(k, 0))
                if isinstance(columns[key], Mapping)]

    collected: Dict[int, Dict[str, Any]] = {}
    for key, value in params.items():
        match = _INDEXED_KEY.match(str(key))
        if not match:
            continue
        idx, attr, sub = int(match.group(1)), match.group(2), match.group(3)
        entry = collected.setdefault(idx, {})
        if sub:
            entry.setdefault(attr, {})[sub] = value
        else:
            entry[attr] = value
    return [collected[idx] for idx in sorted(collected)]


def _descriptor_name(descriptor: Any) -> Optional[str]:
    if isinstance(descriptor, TableDescriptor):
        return descriptor.name
    if isinstance(descriptor, Mapping):
        name = descriptor.get("name")
        if isinstance(name, str) and name.strip():
            return name.strip()
        columns = descriptor.get("columns")
        if isinstance(columns, Mapping) and columns:
            return str(next(iter(columns)))
    return None


def _coerce_descriptor(descriptor: Any, table_name: Optional[str]) -> Optional[TableDescriptor]:
    if isinstance(descriptor, TableDescriptor):
        return descriptor
    if not isinstance(descriptor, Mapping) or not table_name:
        return None
    data = dict(descriptor)
    data["name"] = table_name
    if isinstance(data.get("columns"), Mapping):
        data.pop("columns")
    try:
        return TableDescriptor.model_validate(data)
    except ValidationError as e:
        logger.warning(f"Descriptor for '{table_name}' could not be normalized: {e.error_count()} errors")
        return None


def _coerce_filters(filters: Any) -> List[FilterSpec]:
    if not filters:
        return []
    if isinstance(filters, Mapping):
        # legacy {field: value} shorthand means equality
        filters = [{"field": field, "operator": "equals", "value": value} for field, value in filters.items()]

    coerced = []
    for item in filters:
        if isinstance(item, FilterSpec):
            coerced.append(item)
            continue
        try:
            coerced.append(FilterSpec.model_validate(item))
        except (ValidationError, TypeError) as e:
            logger.warning(f"Ignoring malformed filter {item!r}: {str(e)}")
    return coerced


class ContextAdapter:
    """Builds a CompilationContext from loose request parameters. Never raises."""

    def adapt(
            self,
            raw_request_params: Optional[Mapping[str, Any]],
            descriptor: Any = None,
            filters: Any = None,
            filter_page: Optional[Mapping[str, Any]] = None,
            route: Optional[RouteInfo] = None,
            privilege_roles: Optional[Sequence[str]] = None,
            role_group: Optional[int] = None
    ) -> CompilationContext:
        params: Mapping[str, Any] = raw_request_params if isinstance(raw_request_params, Mapping) else {}

        try:
            table_name = _nested(params, "difta", "name")
            if not isinstance(table_name, str) or not table_name.strip():
                table_name = _descriptor_name(descriptor)
            else:
                table_name = table_name.strip()

            coerced = _coerce_descriptor(descriptor, table_name)
            max_length = coerced.paging.max_length if coerced else None
            default_length = coerced.paging.default_length if coerced else DEFAULT_LENGTH

            return CompilationContext(
                table_name=table_name,
                descriptor=coerced,
                paging=self.paging(params, max_length, default_length),
                filters=_coerce_filters(filters) + (list(coerced.filters) if coerced else []),
                filter_page=dict(filter_page or {}),
                route=route or RouteInfo(),
                privilege_roles=[str(role) for role in (privilege_roles or [])],
                role_group=role_group,
                request_params=dict(params)
            )
        except Exception as e:
            logger.exception(f"Context adaptation failed: {str(e)}")
            return CompilationContext(request_params=dict(params))

    def paging(self, params: Mapping[str, Any], max_length: Optional[int] = None,
               default_length: int = DEFAULT_LENGTH) -> PagingRequest:
        start = max(0, _to_int(params.get("start"), DEFAULT_START))
        length = _to_int(params.get("length"), default_length)
        if length < 0 and max_length:
            # -1 asks for everything
            length = max_length
        elif length <= 0:
            length = default_length
        if max_length:
            length = min(length, max_length)

        order_column = _nested(params, "order", 0, "column")
        order_index = _to_int(order_column, -1) if order_column is not None else -1
        direction = str(_nested(params, "order", 0, "dir") or "asc").lower()

        search = _nested(params, "search", "value")
        search = str(search).strip() if search not in (None, "") else None

        column_searches = {}
        for column in _column_entries(params):
            data = column.get("data")
            if not data or str(column.get("searchable", "true")).lower() == "false":
                continue
            value = column.get("search", {}).get("value") if isinstance(column.get("search"), Mapping) else None
            if value not in (None, ""):
                column_searches[str(data)] = str(value)

        return PagingRequest(
            start=start,
            length=length,
            order_column_index=order_index if order_index >= 0 else None,
            order_direction=direction if direction in ("asc", "desc") else "asc",
            search_term=search or None,
            draw=max(0, _to_int(params.get("draw"), 0)),
            column_searches=column_searches
        )
