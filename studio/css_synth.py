from __future__ import annotations

import re
from typing import Optional

from studio.inspector import ElementHandle
from studio.property_editor import PropertySet, css_value

_CSS_SPECIAL_RE = re.compile(r"([^a-zA-Z0-9_\-])")


def _escape_class(name: str) -> str:
    escaped = _CSS_SPECIAL_RE.sub(r"\\\1", name)
    if escaped[:1].isdigit():
        # identifiers cannot start with a digit
        escaped = f"\\3{escaped[0]} {escaped[1:]}"
    return escaped


def element_identity(element: ElementHandle) -> str:
    """Selector for a generated rule: the element's classes, else its tag name.

    Every element sharing these classes is matched as well.
    """
    classes = [c for c in (element.class_name or "").split() if c]
    if classes:
        return "".join("." + _escape_class(c) for c in classes)
    return element.tag


def build_rule(selector: str, properties: PropertySet) -> str:
    p = properties
    return (
        f"{selector} {{\n"
        f"  background-color: {p.backgroundColor};\n"
        f"  color: {p.color};\n"
        f"  font-size: {css_value('fontSize', p.fontSize)};\n"
        f"  padding: {css_value('padding', p.padding)};\n"
        f"  margin: {css_value('margin', p.margin)};\n"
        f"  border-radius: {css_value('borderRadius', p.borderRadius)};\n"
        f"  border: {css_value('borderWidth', p.borderWidth)} solid {p.borderColor};\n"
        f"  width: {css_value('width', p.width)};\n"
        f"  height: {css_value('height', p.height)};\n"
        f"}}\n"
    )


def generate_updated_css(previous_css: Optional[str], element: ElementHandle, properties: PropertySet) -> str:
    """Append one rule for ``element``; existing rules are left untouched and in order."""
    rule = build_rule(element_identity(element), properties)
    return (previous_css or "") + "\n" + rule
