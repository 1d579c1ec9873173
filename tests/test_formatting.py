# tests/test_formatting.py
import pytest

from tablecraft.compiler import formula as formula_engine
from tablecraft.compiler.columns import ResolvedColumns
from tablecraft.compiler.formatter import ImageRenderer, RowFormatter, format_number, render_status
from tablecraft.core.exceptions import FormatError, ResourceMissingError
from tablecraft.models.descriptor import FormatRule, FormulaSpec


def spec(logic, fields=("amount", "tax"), name="calc"):
    return FormulaSpec(name=name, source_fields=list(fields), logic=logic)


class TestFormula:
    def test_operators(self):
        row = {"amount": "100", "tax": 10}
        assert formula_engine.compute(spec("+"), row) == 110
        assert formula_engine.compute(spec("-"), row) == 90
        assert formula_engine.compute(spec("/"), {"amount": 10, "tax": 4}) == 2.5
        assert formula_engine.compute(spec("/"), {"amount": 10, "tax": 5}) == 2

    def test_aggregates(self):
        row = {"a": 1, "b": 2, "c": None}
        fields = ("a", "b", "c")
        assert formula_engine.compute(spec("avg", fields), row) == 1.5
        assert formula_engine.compute(spec("count", fields), row) == 2
        assert formula_engine.compute(spec("max", fields), row) == 2
        assert formula_engine.compute(spec("concat", ("first", "last")), {"first": "Ada", "last": "Lovelace"}) == "Ada Lovelace"

    def test_expression(self):
        assert formula_engine.compute(spec("amount - tax * 2"), {"amount": 100, "tax": 10}) == 80

    @pytest.mark.parametrize("logic", ["__import__('os')", "amount ** 2", "other + 1"])
    def test_unsafe_or_unknown_expression_raises(self, logic):
        with pytest.raises(FormatError):
            formula_engine.compute(spec(logic), {"amount": 1, "tax": 1})

    def test_evaluate_soft_failure(self):
        assert formula_engine.evaluate(spec("/"), {"amount": 1, "tax": 0}) == ""
        assert formula_engine.evaluate(spec("+"), {"amount": "abc", "tax": 1}) == ""


class TestFormatter:
    def test_format_number_separators(self):
        assert format_number(1234567.891, 2, ".", "decimal") == "1.234.567,89"
        assert format_number(1234567.891, 2, ",", "decimal") == "1,234,567.89"
        assert format_number(1234567, 0, ".", "number") == "1.234.567"
        assert format_number("", 2) is None

    def test_render_status(self):
        assert render_status("active", 1) == "Yes"
        assert render_status("active", "0") == "No"
        assert render_status("flag_status", 1) == "Administrator"
        assert render_status("request_status", 2) == "Blocked"
        assert render_status("request_status", 9) == 9
        assert render_status("note", "x") == "x"

    def test_image_with_thumbnail(self, tmp_path):
        (tmp_path / "uploads" / "thumb").mkdir(parents=True)
        (tmp_path / "uploads" / "a.jpg").write_bytes(b"img")
        (tmp_path / "uploads" / "thumb" / "tnail_a.jpg").write_bytes(b"img")

        html = ImageRenderer(tmp_path).render("photo", "/uploads/a.jpg", {})
        assert 'src="/uploads/thumb/tnail_a.jpg"' in html
        assert 'alt="imgsrc::Photo"' in html

    def test_missing_image_renders_placeholder(self, tmp_path):
        renderer = ImageRenderer(tmp_path)
        html = renderer.render("photo", "/uploads/b.png", {})
        assert "missing-file" in html
        assert "b.png" in html
        with pytest.raises(ResourceMissingError):
            renderer.ensure_exists("/uploads/b.png")

    def test_non_image_shows_last_segment(self, tmp_path):
        assert ImageRenderer(tmp_path).render("file", "docs/report.pdf", {}) == "report.pdf"

    def test_row_formatter(self, tmp_path):
        resolved = ResolvedColumns(ordered=["id", "active", "amount", "total", "ratio"])
        formulas = [
            FormulaSpec(name="total", source_fields=["amount", "tax"], logic="+"),
            FormulaSpec(name="ratio", source_fields=["amount", "zero"], logic="/"),
        ]
        rules = [FormatRule(field="amount", decimals=2, separator=",", format_type="decimal")]
        formatter = RowFormatter(tmp_path)

        view = formatter.format({"id": 1, "active": 1, "amount": 1000, "tax": 5, "zero": 0}, resolved, formulas, rules)
        assert view.values == {"id": 1, "active": "Yes", "amount": "1,000.00", "total": 1005, "ratio": ""}
        assert formatter.diagnostics() == {"rows": 1, "soft_failures": 1}


def test_bad_format_rule_blanks_the_cell(tmp_path):
    formatter = RowFormatter(tmp_path)
    rules = {"amount": FormatRule(field="amount", decimals=-1, format_type="decimal")}
    assert formatter.apply_rules("amount", 1000, rules) == ""
    assert formatter.diagnostics()["soft_failures"] == 1
