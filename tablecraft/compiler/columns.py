# tablecraft/compiler/columns.py
import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field

from tablecraft.models.descriptor import FormulaSpec, RelationSpec

logger = logging.getLogger(__name__)

NUMBER_COLUMN = "number_lists"
ACTION_COLUMN = "action"


class RelationMeta(BaseModel):
    relations: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    foreign_keys: Dict[str, str] = Field(default_factory=dict)


class ResolvedColumns(BaseModel):
    ordered: List[str] = Field(default_factory=list)
    labels: Dict[str, str] = Field(default_factory=dict)
    relation_meta: RelationMeta = Field(default_factory=RelationMeta)
    formulas: List[str] = Field(default_factory=list)

    def index(self, field: str) -> Optional[int]:
        try:
            return self.ordered.index(field)
        except ValueError:
            return None


def apply_relations(
        fields: List[str],
        requested: Sequence[str],
        relations: Sequence[RelationSpec],
        labels: Dict[str, str],
        meta: RelationMeta
) -> List[str]:
    """
    Rewrite requested relation aliases into their display columns.

    Aliases missing from `fields` take the index they had in `requested`;
    aliases that are real columns are replaced where they stand.
    """
    by_alias = {relation.alias_field: relation for relation in relations}
    if not by_alias:
        return list(fields)

    requested_set = set(requested)
    fields = list(fields)
    field_set = set(fields)

    # index -> alias, from the requested list for aliases the schema does not know
    positions: Dict[int, str] = {
        idx: name for idx, name in enumerate(requested)
        if name in by_alias and name not in field_set
    }

    # aliases that are real columns are pulled out and remembered by their index
    kept = []
    for idx, name in enumerate(fields):
        if name in by_alias and name in requested_set:
            positions.setdefault(idx, name)
        else:
            kept.append(name)
    fields = kept

    for idx in sorted(positions):
        alias = positions[idx]
        relation = by_alias[alias]
        if relation.display_field in fields:
            logger.warning(f"Relation display column '{relation.display_field}' already present, skipping")
            continue
        labels[relation.display_field] = relation.label
        meta.relations[alias] = {
            "display_field": relation.display_field,
            "foreign_key": dict(relation.foreign_key),
        }
        meta.foreign_keys.update(relation.foreign_key)
        fields.insert(min(idx, len(fields)), relation.display_field)

    unused = [alias for alias in by_alias if alias not in requested_set]
    if unused:
        logger.debug(f"Unused relation aliases ignored: {unused}")

    return fields


def _numeric_anchor(anchor: Any) -> Optional[int]:
    if isinstance(anchor, bool):
        return None
    if isinstance(anchor, int):
        return anchor
    if isinstance(anchor, str) and anchor.strip().isdigit():
        return int(anchor.strip())
    return None


def place_formulas(columns: Sequence[str], formulas: Sequence[FormulaSpec]) -> List[str]:
    """
    Insert formula columns into `columns`.

    Groups run in a fixed order: first, last+after, <field>+before,
    <field>+after, then last+before. When any <field>+after formula exists
    the last+after formulas are moved to the very end.
    """
    columns = list(columns)
    if not formulas:
        return columns

    has_number = NUMBER_COLUMN in columns
    seen = set(columns)

    first_group: List[FormulaSpec] = []
    last_after: List[FormulaSpec] = []
    last_before: List[FormulaSpec] = []
    custom_before: List[tuple] = []
    custom_after: List[tuple] = []

    for formula in formulas:
        if formula.name in seen:
            logger.warning(f"Formula '{formula.name}' duplicates an existing column, skipping")
            continue

        anchor = formula.placement.anchor
        after = formula.placement.after

        if anchor == "first":
            first_group.append(formula)
        elif anchor == "last":
            (last_after if after else last_before).append(formula)
        else:
            # target is a field name, an index, or the last source field
            if anchor is None or anchor == "":
                if not formula.source_fields:
                    logger.warning(f"Formula '{formula.name}' has no anchor and no source fields, skipping")
                    continue
                target = formula.source_fields[-1]
            else:
                target = anchor

            if target in columns:
                entry = (formula, target, columns.index(target))
            else:
                idx = _numeric_anchor(target)
                if idx is None or not 0 <= idx < len(columns):
                    logger.warning(f"Formula '{formula.name}' anchor '{target}' not found, skipping")
                    continue
                entry = (formula, None, idx)

            (custom_after if after else custom_before).append(entry)

        seen.add(formula.name)

    # 1) first: after number_lists when present, in declaration order
    base = 1 if has_number else 0
    for offset, formula in enumerate(first_group):
        columns.insert(min(base + offset, len(columns)), formula.name)

    # 2) last + after: each at the original action index, else appended
    last_after_names = []
    if last_after:
        action_idx = columns.index(ACTION_COLUMN) if ACTION_COLUMN in columns else None
        for formula in last_after:
            if action_idx is not None:
                columns.insert(action_idx, formula.name)
            else:
                columns.append(formula.name)
            last_after_names.append(formula.name)

    # 3) <field> + before: at the target's current index
    for formula, target, fallback_idx in custom_before:
        idx = columns.index(target) if target is not None and target in columns else fallback_idx
        if target == ACTION_COLUMN and last_after_names:
            idx = max(0, idx - len(last_after_names))
        columns.insert(idx, formula.name)

    # 4) <field> + after: right after the target's current index
    for formula, target, fallback_idx in custom_after:
        idx = columns.index(target) if target is not None and target in columns else fallback_idx
        columns.insert(idx + 1, formula.name)

    if custom_after and last_after_names:
        for name in [column for column in columns if column in last_after_names]:
            columns.remove(name)
            columns.append(name)

    # 5) last + before: before the current last column
    for formula in last_before:
        columns.insert(max(0, len(columns) - 1), formula.name)

    return columns


class ColumnResolver:
    """Resolves the ordered display columns for one descriptor"""

    def __init__(self):
        self._last: Dict[str, Any] = {}

    def resolve(
            self,
            requested_fields: Sequence[str],
            relation_catalog: Sequence[RelationSpec] = (),
            formula_specs: Sequence[FormulaSpec] = (),
            schema_fields: Optional[Sequence[str]] = None,
            labels: Optional[Dict[str, str]] = None
    ) -> ResolvedColumns:
        alias_names = {relation.alias_field for relation in relation_catalog}

        if schema_fields is None:
            base_fields = [f for f in requested_fields if f not in alias_names]
        else:
            base_fields = list(schema_fields)

        resolved_labels = dict(labels or {})
        meta = RelationMeta()
        fields = apply_relations(base_fields, requested_fields, relation_catalog, resolved_labels, meta)

        ordered = place_formulas(fields, formula_specs)
        placed = [f.name for f in formula_specs if f.name in ordered and f.name not in fields]
        for formula in formula_specs:
            if formula.name in placed:
                resolved_labels.setdefault(formula.name, formula.display_label)

        self._last = {
            "requested": len(requested_fields),
            "resolved": len(ordered),
            "relations": sorted(meta.relations),
            "formulas": placed,
        }
        return ResolvedColumns(ordered=ordered, labels=resolved_labels, relation_meta=meta, formulas=placed)

    def diagnostics(self) -> Dict[str, Any]:
        return dict(self._last)
