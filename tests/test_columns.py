# tests/test_columns.py
import pytest

from tablecraft.compiler.columns import ColumnResolver, RelationMeta, apply_relations, place_formulas
from tablecraft.models.descriptor import FormulaPlacement, FormulaSpec, RelationSpec


def formula(name, anchor=None, after=False, fields=None, logic="+"):
    return FormulaSpec(
        name=name,
        source_fields=fields or ["amount"],
        logic=logic,
        placement=FormulaPlacement(anchor=anchor, after=after)
    )


class TestFormulaPlacement:
    def test_first_without_numbering(self):
        result = place_formulas(["id", "name"], [formula("f1", "first")])
        assert result == ["f1", "id", "name"]

    def test_first_after_numbering_keeps_declaration_order(self):
        result = place_formulas(
            ["number_lists", "id", "name"],
            [formula("f1", "first"), formula("f2", "first")]
        )
        assert result == ["number_lists", "f1", "f2", "id", "name"]

    def test_last_after_goes_before_action(self):
        result = place_formulas(["id", "name", "action"], [formula("total", "last", after=True, fields=["name"])])
        assert result == ["id", "name", "total", "action"]

    def test_last_after_without_action_appends(self):
        result = place_formulas(["id", "name"], [formula("total", "last", after=True)])
        assert result == ["id", "name", "total"]

    def test_last_before_goes_before_last_column(self):
        result = place_formulas(["id", "name"], [formula("before_last", "last")])
        assert result == ["id", "before_last", "name"]

    def test_missing_anchor_is_skipped(self):
        result = place_formulas(["id", "name"], [formula("ghost", "missing_field")])
        assert result == ["id", "name"]
        assert "ghost" not in result

    def test_field_anchor_before_and_after(self):
        columns = ["id", "amount", "tax", "action"]
        assert place_formulas(columns, [formula("x", "tax")]) == ["id", "amount", "x", "tax", "action"]
        assert place_formulas(columns, [formula("x", "tax", after=True)]) == ["id", "amount", "tax", "x", "action"]

    def test_multiple_last_after_share_the_original_action_index(self):
        result = place_formulas(
            ["id", "a", "action"],
            [formula("t1", "last", after=True), formula("t2", "last", after=True)]
        )
        assert result == ["id", "a", "t2", "t1", "action"]

    def test_field_after_moves_last_after_to_the_end(self):
        result = place_formulas(
            ["id", "a", "action"],
            [formula("t1", "last", after=True), formula("c", "a", after=True)]
        )
        assert result == ["id", "a", "c", "action", "t1"]

    def test_before_action_shifts_left_of_last_after(self):
        result = place_formulas(
            ["id", "a", "action"],
            [formula("t1", "last", after=True), formula("b", "action")]
        )
        assert result == ["id", "a", "b", "t1", "action"]

    def test_numeric_anchor(self):
        assert place_formulas(["id", "a", "b"], [formula("n", 1)]) == ["id", "n", "a", "b"]
        assert place_formulas(["id", "a", "b"], [formula("n", 9)]) == ["id", "a", "b"]

    def test_no_anchor_goes_before_last_source_field(self):
        result = place_formulas(["id", "amount", "tax"], [formula("total", fields=["amount", "tax"])])
        assert result == ["id", "amount", "total", "tax"]

    def test_duplicate_name_is_skipped(self):
        result = place_formulas(["id", "name"], [formula("id", "first"), formula("t", "first"), formula("t", "last")])
        assert result == ["t", "id", "name"]

    def test_all_classes_together(self):
        result = place_formulas(
            ["number_lists", "id", "amount", "tax", "action"],
            [
                formula("lb", "last"),
                formula("fa", "first"),
                formula("la", "last", after=True),
                formula("cb", "amount"),
            ]
        )
        assert result == ["number_lists", "fa", "id", "cb", "amount", "tax", "la", "lb", "action"]


class TestRelations:
    def test_alias_is_inserted_at_requested_index(self):
        relation = RelationSpec(
            alias_field="user_name",
            display_field="users.name",
            foreign_key={"users.id": "orders.user_id"}
        )
        resolved = ColumnResolver().resolve(
            ["id", "user_name", "amount"],
            [relation],
            schema_fields=["id", "user_id", "amount"]
        )
        assert resolved.ordered == ["id", "users.name", "user_id", "amount"]
        assert resolved.labels["users.name"] == "User Name"
        assert resolved.relation_meta.relations["user_name"]["display_field"] == "users.name"
        assert resolved.relation_meta.foreign_keys == {"users.id": "orders.user_id"}

    def test_real_column_alias_is_replaced_in_place(self):
        relation = RelationSpec(alias_field="user_name", display_field="users.name")
        labels = {}
        fields = apply_relations(
            ["id", "user_name", "amount"], ["id", "user_name", "amount"], [relation], labels, RelationMeta()
        )
        assert fields == ["id", "users.name", "amount"]

    def test_several_relations_in_index_order(self):
        relations = [
            RelationSpec(alias_field="shop_title", display_field="shops.title"),
            RelationSpec(alias_field="user_name", display_field="users.name"),
        ]
        meta = RelationMeta()
        fields = apply_relations(
            ["id", "user_id", "amount", "shop_id"],
            ["id", "user_name", "amount", "shop_title"],
            relations,
            {},
            meta
        )
        assert fields == ["id", "users.name", "user_id", "shops.title", "amount", "shop_id"]
        assert set(meta.relations) == {"user_name", "shop_title"}

    def test_unrequested_alias_is_ignored(self):
        relation = RelationSpec(alias_field="user_name", display_field="users.name")
        meta = RelationMeta()
        fields = apply_relations(["id", "amount"], ["id", "amount"], [relation], {}, meta)
        assert fields == ["id", "amount"]
        assert meta.relations == {}

    def test_formula_labels_and_diagnostics(self):
        resolver = ColumnResolver()
        resolved = resolver.resolve(
            ["id", "amount", "action"],
            formula_specs=[formula("grand_total", "last", after=True)]
        )
        assert resolved.ordered == ["id", "amount", "grand_total", "action"]
        assert resolved.labels["grand_total"] == "Grand Total"
        assert resolved.formulas == ["grand_total"]
        assert resolver.diagnostics()["resolved"] == 4

    @pytest.mark.parametrize("requested", [[], ["id"]])
    def test_no_relations_or_formulas(self, requested):
        assert ColumnResolver().resolve(requested).ordered == requested
