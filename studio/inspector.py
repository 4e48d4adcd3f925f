"""Element selection inside the sandboxed preview.

The preview iframe runs without ``allow-same-origin`` so the host cannot touch
its DOM. The inspector script embedded in the preview document numbers the
elements it wires, reports them after mount (``preview-ready``) and reports
clicks (``preview-select``) together with the node's computed style. This
module keeps the server-side view of that wiring: one set of element handles
per render generation, and at most one selected element.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

log = logging.getLogger(__name__)

EXCLUDED_TAGS = frozenset({"html", "head", "body", "script"})

SELECTED_OUTLINE = "2px solid #ef4444"
OUTLINE_OFFSET = "2px"
PANEL_GAP_PX = 10


class StaleGenerationError(RuntimeError):
    """A callback arrived for a render generation that has been superseded."""

    def __init__(self, generation: int, current: int):
        super().__init__(f"generation {generation} is stale (current {current})")
        self.generation = generation
        self.current = current


@dataclass
class Rect:
    left: float = 0.0
    top: float = 0.0
    right: float = 0.0
    bottom: float = 0.0

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> "Rect":
        data = data or {}

        def _f(key: str) -> float:
            try:
                return float(data.get(key) or 0)
            except (TypeError, ValueError):
                return 0.0

        return cls(left=_f("left"), top=_f("top"), right=_f("right"), bottom=_f("bottom"))


@dataclass
class ElementHandle:
    """Positional reference to one wired node of one render generation."""

    node_id: str
    tag_name: str
    generation: int
    class_name: str = ""
    text_content: str = ""
    computed_style: Dict[str, str] = field(default_factory=dict)
    style: Dict[str, str] = field(default_factory=dict)
    rect: Rect = field(default_factory=Rect)
    _saved_outline: Optional[Dict[str, str]] = field(default=None, repr=False)

    @property
    def tag(self) -> str:
        return self.tag_name.lower()

    def save_outline(self) -> None:
        if self._saved_outline is None:
            self._saved_outline = {
                "outline": self.style.get("outline", ""),
                "outlineOffset": self.style.get("outlineOffset", ""),
            }

    def restore_outline(self) -> None:
        saved = self._saved_outline or {"outline": "", "outlineOffset": ""}
        for key, value in saved.items():
            if value:
                self.style[key] = value
            else:
                self.style.pop(key, None)
        self._saved_outline = None

    def set_outline(self, outline: str) -> None:
        self.save_outline()
        self.style["outline"] = outline
        self.style["outlineOffset"] = OUTLINE_OFFSET


@dataclass
class Selection:
    element: ElementHandle
    x: float
    y: float

    @property
    def generation(self) -> int:
        return self.element.generation

    def anchor(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y}


class ElementInspector:
    """Tracks wired elements and the single selection of the current generation."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self.generation = 0
        self.wired = False
        self._nodes: Dict[str, ElementHandle] = {}
        self.selection: Optional[Selection] = None

    def reset(self, generation: int) -> None:
        """Start a new render generation; every handle and the selection die."""
        with self._lock:
            if self.selection is not None:
                log.debug(
                    "inspector.reset: dropping selection node=%s gen=%d",
                    self.selection.element.node_id,
                    self.generation,
                )
            self.generation = generation
            self.wired = False
            self._nodes = {}
            self.selection = None

    def _check(self, generation: int) -> None:
        if generation != self.generation:
            raise StaleGenerationError(generation, self.generation)

    def wire(self, generation: int, elements: Iterable[Mapping[str, Any]]) -> bool:
        """Register the nodes the preview reported for ``generation``.

        Returns False (and changes nothing) for a superseded generation.
        """
        with self._lock:
            if generation != self.generation:
                log.info("inspector.wire: ignoring stale ready gen=%d current=%d", generation, self.generation)
                return False
            nodes: Dict[str, ElementHandle] = {}
            for item in elements:
                node_id = str(item.get("node_id") or item.get("nodeId") or "")
                tag = str(item.get("tag_name") or item.get("tagName") or "").lower()
                if not node_id or not tag or tag in EXCLUDED_TAGS:
                    continue
                nodes[node_id] = ElementHandle(
                    node_id=node_id,
                    tag_name=tag,
                    generation=generation,
                    class_name=str(item.get("class_name") or item.get("className") or ""),
                    text_content=str(item.get("text_content") or item.get("textContent") or ""),
                )
            self._nodes = nodes
            self.wired = True
            log.info("inspector.wire: gen=%d elements=%d", generation, len(nodes))
            return True

    def elements(self) -> List[ElementHandle]:
        with self._lock:
            return list(self._nodes.values())

    def get(self, generation: int, node_id: str) -> ElementHandle:
        with self._lock:
            self._check(generation)
            try:
                return self._nodes[node_id]
            except KeyError:
                raise KeyError(f"unknown element {node_id!r}") from None

    def select(
        self,
        generation: int,
        node_id: str,
        *,
        computed_style: Optional[Mapping[str, Any]] = None,
        text_content: Optional[str] = None,
        rect: Optional[Mapping[str, Any]] = None,
        frame_rect: Optional[Mapping[str, Any]] = None,
    ) -> Selection:
        """Select one element, deselecting the previous one in the same step."""
        with self._lock:
            handle = self.get(generation, node_id)
            if computed_style is not None:
                handle.computed_style = {str(k): str(v) for k, v in computed_style.items() if v is not None}
            if text_content is not None:
                handle.text_content = text_content
            handle.rect = Rect.from_mapping(rect)
            frame = Rect.from_mapping(frame_rect)

            previous = self.selection
            if previous is not None and previous.element is not handle:
                previous.element.restore_outline()
            handle.set_outline(SELECTED_OUTLINE)

            self.selection = Selection(
                element=handle,
                x=frame.left + handle.rect.right + PANEL_GAP_PX,
                y=frame.top + handle.rect.top,
            )
            log.info("inspector.select: gen=%d node=%s tag=%s", generation, node_id, handle.tag)
            return self.selection

    def clear_selection(self, generation: Optional[int] = None) -> None:
        with self._lock:
            if generation is not None:
                self._check(generation)
            if self.selection is not None:
                self.selection.element.restore_outline()
            self.selection = None
