from __future__ import annotations

import logging
import math
import re
from typing import Optional

from studio.models import ComponentArtifact

log = logging.getLogger(__name__)

JSX_LANGUAGE_TAGS = ("jsx", "tsx", "javascript", "typescript", "js", "ts")

PLACEHOLDER_JSX = "function Component() { return <div>No component generated</div>; }"
PLACEHOLDER_CSS = "/* No styles generated */"

_JSX_BLOCK_RE = re.compile(
    r"```(?:" + "|".join(JSX_LANGUAGE_TAGS) + r")[ \t]*\r?\n([\s\S]*?)\r?\n[ \t]*```",
    re.IGNORECASE,
)
_CSS_BLOCK_RE = re.compile(r"```css[ \t]*\r?\n([\s\S]*?)\r?\n[ \t]*```", re.IGNORECASE)


def _first_block(pattern: re.Pattern[str], text: str) -> Optional[str]:
    m = pattern.search(text)
    if not m:
        return None
    return m.group(1).strip()


def parse_ai_response(response: Optional[str]) -> ComponentArtifact:
    """Extract JSX and CSS from a free-text model reply.

    Lenient by contract: malformed output degrades to placeholders, never raises.
    - first ```jsx/tsx/javascript/typescript/js/ts block -> jsx
    - first ```css block -> css
    - no JSX block: the whole trimmed reply is used as jsx
    - empty jsx but the text looks like a function component: salvage it
    """
    text = response if isinstance(response, str) else ""
    log.debug("llm_parsing: parsing reply chars=%d head=%r", len(text), text[:200])

    jsx = _first_block(_JSX_BLOCK_RE, text)
    css = _first_block(_CSS_BLOCK_RE, text) or ""

    if jsx is None:
        jsx = text.strip()
    else:
        log.debug("llm_parsing: found fenced jsx block chars=%d", len(jsx))

    if not jsx and "function " in text and "return" in text:
        jsx = text.strip()

    if not jsx:
        log.info("llm_parsing: no component in reply; using placeholder")
    return ComponentArtifact(
        jsx=jsx or PLACEHOLDER_JSX,
        css=css or PLACEHOLDER_CSS,
        props={},
    )


def estimate_tokens(text: Optional[str]) -> int:
    # ~4 characters per token
    return math.ceil(len(text or "") / 4)
