# tablecraft/compiler/response.py
import hashlib
import logging
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from tablecraft.compiler.columns import NUMBER_COLUMN, ResolvedColumns
from tablecraft.models.descriptor import PagingRequest, PagingResponse, RowView

logger = logging.getLogger(__name__)

ROW_ID_OFFSET = 80
ROW_ID_HASH = hashlib.md5(b"tablecraft-row").hexdigest()

CLICKABLE_CLASS = "row-list-url clickable"


def encode_id(row_id: Any) -> Optional[str]:
    """Obfuscated row id used by clickable rows"""
    if row_id is None or row_id == "":
        return None
    try:
        return f"{int(row_id) + ROW_ID_OFFSET}{ROW_ID_HASH}"
    except (TypeError, ValueError):
        return f"{row_id}{ROW_ID_HASH}"


def decode_id(token: str) -> Optional[int]:
    if not token or not token.endswith(ROW_ID_HASH):
        return None
    try:
        return int(token[:-len(ROW_ID_HASH)]) - ROW_ID_OFFSET
    except ValueError:
        return None


class ResponseBuilder:
    """Assembles the grid payload from formatted rows"""

    def __init__(self):
        self._last: Dict[str, Any] = {}

    def row_attributes(self, row: Mapping[str, Any], flags: Mapping[str, Any]) -> Dict[str, str]:
        if not flags.get("clickable"):
            return {}
        attributes = {"class": CLICKABLE_CLASS}
        rlp = encode_id(row.get(flags.get("url_target_field") or "id"))
        if rlp is not None:
            attributes["rlp"] = rlp
        return attributes

    def build(
            self,
            paging_request: PagingRequest,
            resolved_columns: ResolvedColumns,
            formatted_rows: Sequence[RowView],
            total_count: int,
            filtered_count: int,
            descriptor_flags: Optional[Mapping[str, Any]] = None,
            raw_rows: Optional[Sequence[Mapping[str, Any]]] = None,
            action_renderer: Optional[Callable[[Mapping[str, Any]], str]] = None
    ) -> PagingResponse:
        flags = dict(descriptor_flags or {})
        raw_rows = raw_rows if raw_rows is not None else [row.values for row in formatted_rows]

        rows = []
        for i, view in enumerate(formatted_rows):
            raw = raw_rows[i] if i < len(raw_rows) else view.values
            values = dict(view.values)
            attributes = dict(view.row_attributes)

            for key, value in self.row_attributes(raw, flags).items():
                # formatter-set attributes win
                attributes.setdefault(key, value)

            if flags.get("numbering"):
                number = paging_request.start + i + 1
                values["DT_RowIndex"] = number
                if NUMBER_COLUMN in values:
                    values[NUMBER_COLUMN] = number

            action = view.action
            if action is None and action_renderer is not None:
                action = action_renderer(raw)

            rows.append(RowView(
                values=values,
                row_attributes=attributes,
                row_class=view.row_class or attributes.get("class"),
                action=action
            ))

        meta = {
            "columns": list(resolved_columns.ordered),
            "labels": dict(resolved_columns.labels),
            "relations": resolved_columns.relation_meta.model_dump(),
        }
        meta.update(flags)

        self._last = {"rows": len(rows), "total": total_count, "filtered": filtered_count}
        return PagingResponse(
            draw=paging_request.draw,
            records_total=total_count,
            records_filtered=filtered_count,
            data=rows,
            meta=meta
        )

    def diagnostics(self) -> Dict[str, Any]:
        return dict(self._last)
