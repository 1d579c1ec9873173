# tests/test_scripts.py
import importlib.util
from pathlib import Path

import orjson
import pytest

from tablecraft.models.descriptor import ParityDiagnostic

SCRIPTS = Path(__file__).resolve().parent.parent / "scripts"


def load_script(name):
    spec = importlib.util.spec_from_file_location(name, SCRIPTS / f"{name}.py")
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def payloads(tmp_path):
    def write(name, total, rows):
        path = tmp_path / f"{name}.json"
        path.write_bytes(orjson.dumps({
            "draw": 1, "recordsTotal": total, "recordsFiltered": total, "data": [{"id": i} for i in range(rows)]
        }))
        return str(path)

    return write


def test_diff_gate_payloads(payloads):
    diff_gate = load_script("diff_gate")
    legacy = payloads("legacy", 10, 2)
    assert diff_gate.main(["--legacy", legacy, "--pipeline", payloads("same", 10, 2), "--tolerance", "0"]) == 0
    assert diff_gate.main(["--legacy", legacy, "--pipeline", payloads("other", 11, 2), "--tolerance", "0"]) == 1
    assert diff_gate.main(["--legacy", legacy, "--pipeline", payloads("other2", 11, 2), "--tolerance", "2"]) == 0
    # missing pipeline output is never tolerated by default
    assert diff_gate.main(["--legacy", legacy, "--tolerance", "100"]) == 1


def test_diff_gate_artifacts(inspector):
    inspector.store(ParityDiagnostic(
        timestamp="2024-05-01T10:00:00+00:00",
        route="admin.orders.index",
        table_name="orders",
        diff_summary={"note": "pipeline_output_unavailable"}
    ))
    diff_gate = load_script("diff_gate")
    directory = str(inspector.config.storage_path)
    assert diff_gate.main(["--dir", directory, "--tolerance", "0"]) == 1
    assert diff_gate.main(["--dir", directory, "--tolerance", "9999"]) == 0


def test_inspector_summary_script(inspector, capsys):
    inspector.store(ParityDiagnostic(
        timestamp="2024-05-01T10:00:00+00:00",
        route="admin.orders.index",
        table_name="orders",
        diff_summary={"note": "no_diff", "summary": {}}
    ))
    summary = load_script("inspector_summary")
    assert summary.main(["--dir", str(inspector.config.storage_path)]) == 0
    output = capsys.readouterr().out
    assert "| File | Route |" in output
    assert "admin.orders.index" in output
