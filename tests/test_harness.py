# tests/test_harness.py
from types import SimpleNamespace

import orjson
import pytest

from tablecraft.compiler.pipeline import TablePipeline
from tablecraft.core.exceptions import ConfigurationError, DataSourceUnavailableError
from tablecraft.parity import harness as harness_module
from tablecraft.parity.harness import ParityHarness
from tablecraft.parity.inspector import REDACTED


def test_legacy_mode_runs_only_legacy(session, make_context, inspector, monkeypatch):
    def explode(self, context):
        raise AssertionError("pipeline must not run in legacy mode")

    monkeypatch.setattr(TablePipeline, "run", explode)
    result = ParityHarness(session, inspector=inspector, mode="legacy").run(make_context())
    assert result.mode == "legacy"
    assert result.chosen_result["recordsTotal"] == 3
    assert result.diff_report is None
    assert inspector.files() == []


def test_refactored_mode_returns_pipeline_payload(session, make_context, inspector, monkeypatch):
    def explode(*args, **kwargs):
        raise AssertionError("legacy must not run in refactored mode")

    monkeypatch.setattr(harness_module, "compile_legacy", explode)
    result = ParityHarness(session, inspector=inspector, mode="refactored").run(make_context())
    assert result.mode == "refactored"
    assert len(result.chosen_result["data"]) == 3


def test_pipeline_switch_promotes_legacy_to_refactored(session):
    settings = SimpleNamespace(DATATABLES_MODE="legacy", DATATABLES_PIPELINE_ENABLED=True, DT_DIFF_TOLERANCE=0)
    assert ParityHarness(session, settings=settings).mode == "refactored"


def test_hybrid_returns_legacy_and_persists_diff(session, make_context, inspector):
    context = make_context({"draw": "5", "api_token": "t0ps3cret"})
    harness = ParityHarness(session, inspector=inspector, mode="hybrid")
    result = harness.run(context)

    assert result.mode == "hybrid"
    assert result.chosen_result["draw"] == 5
    assert result.diff_report["note"] == "no_diff"
    assert result.severity == 0

    path = harness.last_write.result(timeout=5)
    artifact = orjson.loads(path.read_bytes())
    assert artifact["table_name"] == "orders"
    assert artifact["route"] == "admin.orders.index"
    assert artifact["diff"]["note"] == "no_diff"
    assert artifact["request"]["api_token"] == REDACTED
    assert artifact["pipeline"]["data_source"]["table"] == "orders"


def test_hybrid_pipeline_failure_degrades(session, make_context, inspector, monkeypatch):
    def explode(self, context):
        raise RuntimeError("boom")

    monkeypatch.setattr(TablePipeline, "run", explode)
    harness = ParityHarness(session, inspector=inspector, mode="hybrid")
    result = harness.run(make_context())

    assert result.chosen_result["recordsTotal"] == 3
    assert result.diff_report == {"note": "pipeline_output_unavailable"}
    assert result.severity == 9999
    assert harness.last_write.result(timeout=5) is not None


def test_hybrid_reports_mismatch(session, make_context, inspector, monkeypatch):
    original = TablePipeline.run

    def short(self, context):
        response = original(self, context)
        return response.model_copy(update={"records_total": 99, "data": response.data[:1]})

    monkeypatch.setattr(TablePipeline, "run", short)
    result = ParityHarness(session, inspector=inspector, mode="hybrid").run(make_context())
    assert result.diff_report["recordsTotal"] == {"legacy": 3, "pipeline": 99}
    assert result.diff_report["data_length"] == {"legacy": 3, "pipeline": 1}
    assert result.severity == 3
    assert len(result.chosen_result["data"]) == 3


def test_missing_descriptor_is_configuration_error(session, make_context):
    context = make_context().model_copy(update={"descriptor": None})
    with pytest.raises(ConfigurationError):
        ParityHarness(session, mode="hybrid").run(context)


def test_data_source_failure_surfaces(session, make_context, monkeypatch):
    def unavailable(*args, **kwargs):
        raise DataSourceUnavailableError("database down")

    monkeypatch.setattr(harness_module, "compile_legacy", unavailable)
    with pytest.raises(DataSourceUnavailableError):
        ParityHarness(session, mode="hybrid").run(make_context())


def test_inspector_construction_failure_does_not_break_response(session, make_context, monkeypatch):
    def broken(*args, **kwargs):
        raise ValueError("bad inspector settings")

    monkeypatch.setattr(harness_module, "Inspector", broken)
    harness = ParityHarness(session, mode="hybrid")
    result = harness.run(make_context())
    assert result.chosen_result["recordsTotal"] == 3
    assert result.diff_report["note"] == "no_diff"
    assert harness.last_write is None
