# tablecraft/models/descriptor.py
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

DEFAULT_VERBS = ["view", "insert", "edit", "delete"]

FilterOperator = Literal[
    "equals", "notEqual", "contains", "startsWith", "endsWith",
    "greaterThan", "lessThan", "greaterThanOrEqual", "lessThanOrEqual",
    "inRange", "blank", "notBlank", "in",
]


def humanize(field: str) -> str:
    """Turn a column name into a display label: user_name -> User Name"""
    name = field.split(".")[-1]
    return " ".join(part.capitalize() for part in name.replace("-", "_").split("_") if part)


class ColumnSpec(BaseModel):
    """One displayed column. Position in the descriptor is display order."""
    model_config = ConfigDict(frozen=True)

    field: str
    label: Optional[str] = None
    hidden: bool = False
    raw_html: bool = False
    sortable: bool = True
    searchable: bool = True
    image_hint: bool = False

    @property
    def display_label(self) -> str:
        return self.label or humanize(self.field)


class RelationSpec(BaseModel):
    """
    Rewrites a requested alias column into a joined display column.
    foreign_key maps "<related_table>.<key>" to "<table>.<column>".
    """
    model_config = ConfigDict(frozen=True)

    alias_field: str
    display_field: str
    display_label: Optional[str] = None
    foreign_key: Dict[str, str] = Field(default_factory=dict)

    @property
    def label(self) -> str:
        return self.display_label or humanize(self.alias_field)

    @property
    def related_table(self) -> str:
        return self.display_field.split(".", 1)[0]


class FormulaPlacement(BaseModel):
    model_config = ConfigDict(frozen=True)

    # "first", "last", a field name, a column index, or None (before the last source field)
    anchor: Optional[Union[int, str]] = None
    after: bool = False


class FormulaSpec(BaseModel):
    """Computed column evaluated per row from source_fields"""
    model_config = ConfigDict(frozen=True)

    name: str
    label: Optional[str] = None
    source_fields: List[str] = Field(default_factory=list)
    logic: str = "+"
    placement: FormulaPlacement = Field(default_factory=FormulaPlacement)

    @property
    def display_label(self) -> str:
        return self.label or humanize(self.name)


class ActionConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    enabled_verbs: List[str] = Field(default_factory=lambda: list(DEFAULT_VERBS))
    removed_verbs: List[str] = Field(default_factory=list)
    # "name|color|icon" strings, bare names, or True for the default view/edit/delete set
    custom_buttons: List[Union[bool, str]] = Field(default_factory=list)


class FilterSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    operator: FilterOperator = "equals"
    value: Any = None


class FormatRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    decimals: int = 0
    separator: str = "."
    format_type: Optional[str] = None  # number | decimal


class PagingConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    default_length: int = 10
    max_length: int = 1000


class OrderBy(BaseModel):
    model_config = ConfigDict(frozen=True)

    column: str
    direction: Literal["asc", "desc"] = "asc"

    @field_validator("direction", mode="before")
    @classmethod
    def _lower_direction(cls, value: Any) -> Any:
        return value.lower() if isinstance(value, str) else value


class TableDescriptor(BaseModel):
    """Everything a controller declares about one admin table"""
    model_config = ConfigDict(frozen=True)

    name: str
    columns: List[ColumnSpec] = Field(default_factory=list)
    relations: List[RelationSpec] = Field(default_factory=list)
    formulas: List[FormulaSpec] = Field(default_factory=list)
    actions: ActionConfig = Field(default_factory=ActionConfig)
    filters: List[FilterSpec] = Field(default_factory=list)
    paging: PagingConfig = Field(default_factory=PagingConfig)
    format_rules: List[FormatRule] = Field(default_factory=list)
    clickable: bool = False
    numbering: bool = False
    url_target_field: str = "id"
    soft_delete_field: Optional[str] = "deleted_at"
    merged_columns: Dict[str, List[str]] = Field(default_factory=dict)
    fixed_columns: Dict[str, int] = Field(default_factory=dict)
    order_by: Optional[OrderBy] = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("table name must not be empty")
        return value.strip()

    @property
    def field_names(self) -> List[str]:
        return [column.field for column in self.columns]

    def column(self, field: str) -> Optional[ColumnSpec]:
        for column in self.columns:
            if column.field == field:
                return column
        return None

    def flags(self) -> Dict[str, Any]:
        """Per-column presentation flags copied into the response meta"""
        return {
            "hidden": [c.field for c in self.columns if c.hidden],
            "raw_html": [c.field for c in self.columns if c.raw_html],
            "sortable": [c.field for c in self.columns if c.sortable],
            "searchable": [c.field for c in self.columns if c.searchable],
            "merged_columns": dict(self.merged_columns),
            "fixed_columns": dict(self.fixed_columns),
            "clickable": self.clickable,
            "numbering": self.numbering,
        }


class PagingRequest(BaseModel):
    start: int = 0
    length: int = 10
    order_column_index: Optional[int] = None
    order_direction: Literal["asc", "desc"] = "asc"
    search_term: Optional[str] = None
    draw: int = 0
    column_searches: Dict[str, str] = Field(default_factory=dict)


class RowView(BaseModel):
    """One rendered row: ordered field values plus grid row attributes"""
    values: Dict[str, Any] = Field(default_factory=dict)
    row_attributes: Dict[str, str] = Field(default_factory=dict)
    row_class: Optional[str] = None
    action: Optional[str] = None

    def serialize(self) -> Dict[str, Any]:
        payload = dict(self.values)
        if self.action is not None:
            payload["action"] = self.action
        if self.row_attributes:
            payload["DT_RowAttr"] = dict(self.row_attributes)
        if self.row_class:
            payload["DT_RowClass"] = self.row_class
        return payload


class PagingResponse(BaseModel):
    draw: int = 0
    records_total: int = 0
    records_filtered: int = 0
    data: List[RowView] = Field(default_factory=list)
    meta: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self, include_meta: bool = False) -> Dict[str, Any]:
        """DataTables payload: draw, recordsTotal, recordsFiltered, data"""
        payload = {
            "draw": self.draw,
            "recordsTotal": self.records_total,
            "recordsFiltered": self.records_filtered,
            "data": [row.serialize() for row in self.data],
        }
        if include_meta:
            payload["meta"] = self.meta
        return payload


class ParityDiagnostic(BaseModel):
    """Write-once record of one dual run"""
    model_config = ConfigDict(frozen=True)

    timestamp: str
    route: str
    table_name: str
    diff_summary: Dict[str, Any] = Field(default_factory=dict)
    redacted_request_context: Dict[str, Any] = Field(default_factory=dict)
