# tablecraft/compiler/pipeline.py
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy.engine import Connection
from sqlalchemy.orm import Session

from tablecraft.compiler.actions import ActionResolver, resolve_base_path
from tablecraft.compiler.columns import ACTION_COLUMN, NUMBER_COLUMN, ColumnResolver, ResolvedColumns
from tablecraft.compiler.context import CompilationContext
from tablecraft.compiler.formatter import RowFormatter
from tablecraft.compiler.response import ResponseBuilder
from tablecraft.core.exceptions import ConfigurationError
from tablecraft.models.descriptor import PagingResponse, RelationSpec, TableDescriptor, RowView
from tablecraft.services.data_source import DataSource, QueryResult

logger = logging.getLogger(__name__)


def merge_relations(declared: Sequence[RelationSpec], discovered: Sequence[RelationSpec] = ()) -> List[RelationSpec]:
    """Declared relations win over introspected ones with the same alias"""
    merged = {relation.alias_field: relation for relation in discovered}
    merged.update({relation.alias_field: relation for relation in declared})
    return list(merged.values())


def requested_columns(descriptor: TableDescriptor) -> List[str]:
    """Declared fields framed by the numbering and action columns"""
    fields = [field for field in descriptor.field_names if field not in (NUMBER_COLUMN, ACTION_COLUMN)]
    if descriptor.numbering:
        fields.insert(0, NUMBER_COLUMN)
    if descriptor.actions.enabled:
        fields.append(ACTION_COLUMN)
    return fields


def schema_columns(requested: Sequence[str], table_columns: Sequence[str]) -> List[str]:
    """Requested fields the table actually has, keeping the synthetic columns"""
    available = set(table_columns) | {NUMBER_COLUMN, ACTION_COLUMN}
    return [field for field in requested if field in available]


def excluded_fields(descriptor: TableDescriptor, resolved: ResolvedColumns, flag: str) -> List[str]:
    """Fields switched off for search or sort, including the display columns of such aliases"""
    excluded = [column.field for column in descriptor.columns if not getattr(column, flag)]
    for alias, relation in resolved.relation_meta.relations.items():
        if alias in excluded:
            excluded.append(relation["display_field"])
    return excluded


class TablePipeline:
    """Modular compiler: resolve -> query -> enrich -> finalize"""

    def __init__(
            self,
            bind: Union[Connection, Session],
            asset_root: Optional[Union[str, Path]] = None,
            relation_catalog: Sequence[RelationSpec] = ()
    ):
        self.bind = bind
        self.asset_root = asset_root
        self.relation_catalog = list(relation_catalog)
        self.columns = ColumnResolver()
        self.actions = ActionResolver()
        self.builder = ResponseBuilder()
        self.formatter: Optional[RowFormatter] = None
        self.source: Optional[DataSource] = None
        self.timings: Dict[str, float] = {}

    def run(self, context: CompilationContext) -> PagingResponse:
        descriptor = context.descriptor
        if descriptor is None or not context.table_name:
            raise ConfigurationError("No table descriptor to compile")

        started = time.time()
        resolved, relations = self.resolve_stage(context)
        self.timings["resolve"] = time.time() - started

        started = time.time()
        result = self.query_stage(context, resolved, relations)
        self.timings["query"] = time.time() - started

        started = time.time()
        rows = self.enrich_stage(context, resolved, result)
        self.timings["enrich"] = time.time() - started

        response = self.finalize_stage(context, resolved, result, rows)
        logger.debug(f"Pipeline compiled {context.table_name}: {len(rows)} rows, timings={self.timings}")
        return response

    def resolve_stage(self, context: CompilationContext):
        descriptor = context.descriptor
        self.source = DataSource(self.bind, descriptor.name)
        relations = merge_relations(descriptor.relations, self.relation_catalog)

        requested = requested_columns(descriptor)
        labels = {column.field: column.display_label for column in descriptor.columns}
        resolved = self.columns.resolve(
            requested,
            relations,
            descriptor.formulas,
            schema_fields=schema_columns(requested, self.source.columns()),
            labels=labels
        )
        return resolved, relations

    def query_stage(self, context: CompilationContext, resolved: ResolvedColumns,
                    relations: Sequence[RelationSpec]) -> QueryResult:
        descriptor = context.descriptor
        return self.source.fetch(
            resolved,
            context.paging,
            relations=relations,
            filters=context.filters,
            order_by=descriptor.order_by,
            exclude_search=excluded_fields(descriptor, resolved, "searchable"),
            exclude_sort=excluded_fields(descriptor, resolved, "sortable")
        )

    def enrich_stage(self, context: CompilationContext, resolved: ResolvedColumns,
                     result: QueryResult) -> List[RowView]:
        descriptor = context.descriptor
        image_fields = [column.field for column in descriptor.columns if column.image_hint]
        self.formatter = RowFormatter(self.asset_root, image_fields)
        return [
            self.formatter.format(row, resolved, descriptor.formulas, descriptor.format_rules)
            for row in result.rows
        ]

    def finalize_stage(self, context: CompilationContext, resolved: ResolvedColumns,
                       result: QueryResult, rows: List[RowView]) -> PagingResponse:
        descriptor = context.descriptor

        renderer = None
        if descriptor.actions.enabled:
            buttons = self.actions.resolve(
                context.privilege_roles,
                descriptor.actions.enabled_verbs,
                descriptor.actions.removed_verbs,
                descriptor.actions.custom_buttons,
                route_name=context.route.route_name,
                role_group=context.role_group
            )
            base_path = resolve_base_path(context.route)

            def renderer(row):
                return self.actions.render(
                    buttons, row, base_path, descriptor.url_target_field, descriptor.soft_delete_field
                )

        flags = descriptor.flags()
        flags["url_target_field"] = descriptor.url_target_field
        return self.builder.build(
            context.paging,
            resolved,
            rows,
            result.total,
            result.filtered,
            flags,
            raw_rows=result.rows,
            action_renderer=renderer
        )

    def diagnostics(self) -> Dict[str, Any]:
        """Safe per-component facts for the inspector"""
        return {
            "columns": self.columns.diagnostics(),
            "actions": self.actions.diagnostics(),
            "formatter": self.formatter.diagnostics() if self.formatter else {},
            "response": self.builder.diagnostics(),
            "data_source": self.source.diagnostics() if self.source else {},
            "timings": {stage: round(seconds, 4) for stage, seconds in self.timings.items()},
        }
