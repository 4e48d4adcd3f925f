from __future__ import annotations

import logging
import math
import re
from dataclasses import asdict, dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from studio.inspector import ElementHandle

log = logging.getLogger(__name__)

DEFAULT_COLOR = "#ffffff"
SizeValue = Union[int, str]

_RGB_RE = re.compile(
    r"^rgba?\(\s*([\d.]+)(?:\s*,\s*|\s+)([\d.]+)(?:\s*,\s*|\s+)([\d.]+)\s*(?:[,/]\s*([\d.]+%?)\s*)?\)$"
)
_LEADING_INT_RE = re.compile(r"^\s*(-?\d+)")

# property -> inline style key; None means text content
STYLE_PROPERTIES: Dict[str, Optional[str]] = {
    "backgroundColor": "backgroundColor",
    "color": "color",
    "fontSize": "fontSize",
    "padding": "padding",
    "margin": "margin",
    "borderRadius": "borderRadius",
    "borderWidth": "borderWidth",
    "borderColor": "borderColor",
    "textContent": None,
    "width": "width",
    "height": "height",
}
PX_PROPERTIES = frozenset({"fontSize", "padding", "margin", "borderRadius", "borderWidth"})
SIZE_PROPERTIES = frozenset({"width", "height"})
COLOR_PROPERTIES = frozenset({"backgroundColor", "color", "borderColor"})
TEXT_LOCKED_TAGS = frozenset({"input", "textarea"})


def rgb_to_hex(value: Optional[str]) -> str:
    """Normalise a browser colour string (rgb/rgba/#hex) to ``#rrggbb``.

    Transparent or unparseable input falls back to white.
    """
    if not value:
        return DEFAULT_COLOR
    s = value.strip().lower()
    if s == "transparent":
        return DEFAULT_COLOR
    if s.startswith("#"):
        digits = s[1:]
        if len(digits) in (3, 4) and all(c in "0123456789abcdef" for c in digits):
            return "#" + "".join(c * 2 for c in digits[:3])
        if len(digits) in (6, 8) and all(c in "0123456789abcdef" for c in digits):
            return "#" + digits[:6]
        return DEFAULT_COLOR
    m = _RGB_RE.match(s)
    if not m:
        return DEFAULT_COLOR
    try:
        channels = [float(c) for c in m.group(1, 2, 3)]
        alpha = m.group(4)
        if alpha is not None:
            opacity = float(alpha[:-1]) / 100 if alpha.endswith("%") else float(alpha)
            if opacity == 0:
                return DEFAULT_COLOR
    except ValueError:
        return DEFAULT_COLOR
    return "#" + "".join(f"{min(int(round(c)), 255):02x}" for c in channels)


def parse_px(value: Any, default: int) -> int:
    """Leading integer of a CSS length ("12.5px" -> 12); ``default`` when absent or zero."""
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float)):
        return int(value) or default
    m = _LEADING_INT_RE.match(str(value or ""))
    if not m:
        return default
    return int(m.group(1)) or default


def _size(value: Any) -> SizeValue:
    if value is None or str(value).strip() in {"", "auto"}:
        return "auto"
    m = _LEADING_INT_RE.match(str(value))
    return int(m.group(1)) if m else "auto"


@dataclass
class PropertySet:
    backgroundColor: str = DEFAULT_COLOR
    color: str = "#000000"
    fontSize: int = 16
    padding: int = 8
    margin: int = 0
    borderRadius: int = 4
    borderWidth: int = 1
    borderColor: str = "#e5e7eb"
    textContent: str = ""
    width: SizeValue = "auto"
    height: SizeValue = "auto"

    @classmethod
    def from_element(cls, element: ElementHandle) -> "PropertySet":
        cs = element.computed_style
        return cls(
            backgroundColor=rgb_to_hex(cs.get("backgroundColor")),
            color=rgb_to_hex(cs.get("color")),
            fontSize=parse_px(cs.get("fontSize"), 16),
            padding=parse_px(cs.get("padding"), 8),
            margin=parse_px(cs.get("margin"), 0),
            borderRadius=parse_px(cs.get("borderRadius"), 4),
            borderWidth=parse_px(cs.get("borderWidth"), 1),
            borderColor=rgb_to_hex(cs.get("borderColor")),
            textContent=element.text_content or "",
            width=_size(cs.get("width")),
            height=_size(cs.get("height")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class StyleMutation:
    """One assignment the preview must perform on the live node."""

    node_id: str
    generation: int
    target: str  # "style" or "text"
    name: str
    value: str

    def to_message(self) -> Dict[str, Any]:
        return {
            "type": "apply-style",
            "generation": self.generation,
            "nodeId": self.node_id,
            "target": self.target,
            "name": self.name,
            "value": self.value,
        }


@dataclass(frozen=True)
class PropertyChange:
    property: str
    value: Any
    properties: PropertySet


PropertyListener = Callable[[PropertyChange], None]


def _to_int(prop: str, value: Any, expected: str) -> int:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{prop} expects {expected}, got {value!r}") from None
    if not math.isfinite(number):
        raise ValueError(f"{prop} expects a finite number, got {value!r}")
    return int(number)


def _coerce(prop: str, value: Any) -> Any:
    if prop in PX_PROPERTIES:
        return _to_int(prop, value, "a number")
    if prop in SIZE_PROPERTIES:
        if isinstance(value, str) and value.strip() == "auto":
            return "auto"
        return _to_int(prop, value, "'auto' or a number")
    return "" if value is None else str(value)


def css_value(prop: str, value: Any) -> str:
    if prop in PX_PROPERTIES:
        return f"{value}px"
    if prop in SIZE_PROPERTIES:
        return "auto" if value == "auto" else f"{value}px"
    return str(value)


class PropertyEditor:
    """Editable property set bound to one selected element.

    Every ``apply`` mutates the live handle and emits exactly one
    ``PropertyChange``; persistence is up to the subscribers.
    """

    def __init__(self, element: ElementHandle, properties: Optional[PropertySet] = None):
        self.element = element
        self.properties = properties or PropertySet.from_element(element)
        self._listeners: List[PropertyListener] = []

    def subscribe(self, listener: PropertyListener) -> None:
        self._listeners.append(listener)

    def apply(self, prop: str, value: Any) -> Optional[StyleMutation]:
        if prop not in STYLE_PROPERTIES:
            raise ValueError(f"unknown property {prop!r}")
        value = _coerce(prop, value)
        data = self.properties.to_dict()
        data[prop] = value
        self.properties = PropertySet(**data)

        mutation = self._apply_to_element(prop, value)
        change = PropertyChange(property=prop, value=value, properties=self.properties)
        log.debug("property_editor.apply: node=%s %s=%r", self.element.node_id, prop, value)
        for listener in list(self._listeners):
            listener(change)
        return mutation

    def _apply_to_element(self, prop: str, value: Any) -> Optional[StyleMutation]:
        el = self.element
        style_key = STYLE_PROPERTIES[prop]
        if style_key is None:
            if el.tag in TEXT_LOCKED_TAGS:
                return None
            el.text_content = value
            return StyleMutation(el.node_id, el.generation, "text", "textContent", value)
        rendered = css_value(prop, value)
        el.style[style_key] = rendered
        return StyleMutation(el.node_id, el.generation, "style", style_key, rendered)
