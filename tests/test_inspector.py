import pytest

from studio.inspector import (
    SELECTED_OUTLINE,
    ElementInspector,
    StaleGenerationError,
)

ELEMENTS = [
    {"nodeId": "n0", "tagName": "DIV", "className": "card shadow", "textContent": "Hello"},
    {"nodeId": "n1", "tagName": "button", "className": "btn", "textContent": "Go"},
    {"nodeId": "n2", "tagName": "script"},
    {"nodeId": "n3", "tagName": "body"},
]


def _wired(generation=1):
    insp = ElementInspector()
    insp.reset(generation)
    assert insp.wire(generation, ELEMENTS) is True
    return insp


def test_wire_skips_document_level_tags():
    insp = _wired()
    assert [h.node_id for h in insp.elements()] == ["n0", "n1"]
    assert insp.get(1, "n0").tag == "div"
    assert insp.get(1, "n0").class_name == "card shadow"


def test_stale_ready_is_ignored():
    insp = ElementInspector()
    insp.reset(2)
    assert insp.wire(1, ELEMENTS) is False
    assert insp.wired is False
    assert insp.elements() == []


def test_select_anchor_and_outline():
    insp = _wired()
    sel = insp.select(
        1,
        "n1",
        computed_style={"color": "rgb(0, 0, 0)"},
        rect={"left": 10, "top": 40, "right": 110, "bottom": 60},
        frame_rect={"left": 300, "top": 80, "right": 900, "bottom": 700},
    )
    assert sel.anchor() == {"x": 300 + 110 + 10, "y": 80 + 40}
    assert sel.element.style["outline"] == SELECTED_OUTLINE
    assert sel.element.style["outlineOffset"] == "2px"
    assert sel.element.computed_style == {"color": "rgb(0, 0, 0)"}


def test_single_selection_restores_previous_outline():
    insp = _wired()
    first = insp.get(1, "n0")
    first.style["outline"] = "1px dashed green"
    insp.select(1, "n0")
    insp.select(1, "n1")
    assert insp.selection.element.node_id == "n1"
    assert first.style["outline"] == "1px dashed green"
    assert "outlineOffset" not in first.style


def test_reset_invalidates_handles_and_selection():
    insp = _wired()
    insp.select(1, "n0")
    insp.reset(2)
    assert insp.selection is None
    with pytest.raises(StaleGenerationError):
        insp.select(1, "n0")
    with pytest.raises(KeyError):
        insp.get(2, "n0")


def test_unknown_node_raises_key_error():
    insp = _wired()
    with pytest.raises(KeyError):
        insp.select(1, "n99")


def test_clear_selection():
    insp = _wired()
    insp.select(1, "n0")
    insp.clear_selection(1)
    assert insp.selection is None
    assert "outline" not in insp.get(1, "n0").style
    with pytest.raises(StaleGenerationError):
        insp.clear_selection(5)
