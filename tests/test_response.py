# tests/test_response.py
from tablecraft.compiler.columns import ResolvedColumns
from tablecraft.compiler.response import CLICKABLE_CLASS, ResponseBuilder, decode_id, encode_id
from tablecraft.models.descriptor import PagingRequest, RowView


def test_encode_decode_id():
    token = encode_id(5)
    assert token.startswith("85")
    assert decode_id(token) == 5
    assert encode_id(None) is None
    assert decode_id("garbage") is None


def test_build_wire_payload():
    resolved = ResolvedColumns(ordered=["number_lists", "id", "name", "action"])
    rows = [
        RowView(values={"number_lists": None, "id": 1, "name": "a", "action": None}),
        RowView(values={"number_lists": None, "id": 2, "name": "b", "action": None},
                row_attributes={"class": "custom"}),
    ]
    builder = ResponseBuilder()
    response = builder.build(
        PagingRequest(start=10, length=2, draw=4),
        resolved,
        rows,
        total_count=30,
        filtered_count=12,
        descriptor_flags={"clickable": True, "numbering": True},
        action_renderer=lambda row: f"<a>{row['id']}</a>"
    )

    wire = response.to_wire()
    assert wire["draw"] == 4
    assert wire["recordsTotal"] == 30
    assert wire["recordsFiltered"] == 12
    first, second = wire["data"]
    assert first["number_lists"] == 11
    assert first["DT_RowIndex"] == 11
    assert second["number_lists"] == 12
    assert first["action"] == "<a>1</a>"
    assert first["DT_RowAttr"]["class"] == CLICKABLE_CLASS
    assert decode_id(first["DT_RowAttr"]["rlp"]) == 1
    assert first["DT_RowClass"] == CLICKABLE_CLASS
    # attributes set by the formatter are kept
    assert second["DT_RowAttr"]["class"] == "custom"
    assert "meta" not in wire
    assert response.meta["columns"] == resolved.ordered
    assert builder.diagnostics() == {"rows": 2, "total": 30, "filtered": 12}


def test_build_without_flags():
    response = ResponseBuilder().build(PagingRequest(), ResolvedColumns(ordered=["id"]), [RowView(values={"id": 1})], 1, 1)
    assert response.to_wire()["data"] == [{"id": 1}]
    assert response.to_wire(include_meta=True)["meta"]["labels"] == {}
