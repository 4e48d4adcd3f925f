from __future__ import annotations

import logging
import os
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from jinja2 import Environment, FileSystemLoader, select_autoescape

log = logging.getLogger(__name__)

# Resolution order for the component the generated code defines
CANDIDATE_COMPONENTS = ("Component", "Button", "Card", "LoginForm", "Navigation", "TestComponent")

PLACEHOLDER_COMPONENT = """function Component() {
  return (
    <div style={{ padding: '20px', textAlign: 'center', color: '#666' }}>
      No component generated yet. Start a conversation to generate your first component!
    </div>
  );
}"""

REACT_SRC = "https://unpkg.com/react@18/umd/react.development.js"
REACT_DOM_SRC = "https://unpkg.com/react-dom@18/umd/react-dom.development.js"
BABEL_SRC = "https://unpkg.com/@babel/standalone/babel.min.js"

_IMPORT_RE = re.compile(r"""^[ \t]*import\s+[^;]*?\s+from\s+['"][^'"]+['"];?[ \t]*\r?\n?""", re.MULTILINE)
_BARE_IMPORT_RE = re.compile(r"""^[ \t]*import\s+['"][^'"]+['"];?[ \t]*\r?\n?""", re.MULTILINE)
_EXPORT_LIST_RE = re.compile(r"""^[ \t]*export\s*(?:\{[^}]*\}|\*(?:\s+as\s+[\w$]+)?)\s*(?:from\s+['"][^'"]+['"])?[ \t]*;?[ \t]*\r?\n?""", re.MULTILINE)
_EXPORT_DEFAULT_DECL_RE = re.compile(
    r"^([ \t]*)export\s+default\s+(?=(?:async\s+)?function\s*\*?\s*[A-Za-z_$]|class\s+[A-Za-z_$]|const\b|let\b|var\b)",
    re.MULTILINE,
)
_EXPORT_DEFAULT_NAME_RE = re.compile(r"^[ \t]*export\s+default\s+[A-Za-z_$][\w$]*[ \t]*;?[ \t]*(?:\r?\n|$)", re.MULTILINE)
# anonymous default export: bind it to the first candidate name
_EXPORT_DEFAULT_EXPR_RE = re.compile(r"^([ \t]*)export\s+default\s+", re.MULTILINE)
_EXPORT_RE = re.compile(r"^([ \t]*)export\s+", re.MULTILINE)

_TEMPLATES_DIR = os.getenv("STUDIO_TEMPLATES_DIR") or str(Path(__file__).resolve().parent.parent / "templates")

_env = Environment(
    loader=FileSystemLoader(_TEMPLATES_DIR),
    autoescape=select_autoescape(["html", "xml"]),
    enable_async=False,
)


def clean_jsx(jsx: Optional[str]) -> str:
    """Strip module syntax the in-browser transform cannot resolve.

    ``import`` lines and ``export { ... }`` lists are dropped, ``export`` and
    ``export default`` keywords are removed from declarations, a trailing
    ``export default Name;`` is dropped entirely and an anonymous default
    export becomes ``const Component = ...``.
    """
    code = jsx if isinstance(jsx, str) else ""
    code = _IMPORT_RE.sub("", code)
    code = _BARE_IMPORT_RE.sub("", code)
    code = _EXPORT_LIST_RE.sub("", code)
    code = _EXPORT_DEFAULT_DECL_RE.sub(r"\1", code)
    code = _EXPORT_DEFAULT_NAME_RE.sub("", code)
    code = _EXPORT_DEFAULT_EXPR_RE.sub(r"\1const " + CANDIDATE_COMPONENTS[0] + " = ", code)
    code = _EXPORT_RE.sub(r"\1", code)
    return code.strip()


def _embed_script(code: str) -> str:
    return re.sub(r"</(script)", r"<\\/\1", code, flags=re.IGNORECASE)


def _embed_style(css: str) -> str:
    return re.sub(r"</(style)", r"<\\/\1", css, flags=re.IGNORECASE)


def generate_preview_html(jsx: Optional[str], css: Optional[str], generation: int = 0, edit_mode: bool = True) -> str:
    """Self-contained document that mounts the component inside the sandbox."""
    code = clean_jsx(jsx) or PLACEHOLDER_COMPONENT
    tpl = _env.get_template("preview.html")
    return tpl.render(
        jsx=_embed_script(code),
        css=_embed_style(css if isinstance(css, str) else ""),
        generation=int(generation),
        edit_mode=bool(edit_mode),
        candidates=CANDIDATE_COMPONENTS,
        react_src=REACT_SRC,
        react_dom_src=REACT_DOM_SRC,
        babel_src=BABEL_SRC,
    )


@dataclass(frozen=True)
class RenderedPreview:
    generation: int
    html: str


class PreviewRenderer:
    """Builds preview documents and numbers each render.

    Every render supersedes the previous one; callbacks carrying an older
    generation are stale.
    """

    def __init__(self, edit_mode: bool = True):
        self.edit_mode = edit_mode
        self._lock = threading.Lock()
        self._generation = 0

    @property
    def generation(self) -> int:
        return self._generation

    def render(self, jsx: Optional[str], css: Optional[str]) -> RenderedPreview:
        with self._lock:
            self._generation += 1
            generation = self._generation
        html = generate_preview_html(jsx, css, generation=generation, edit_mode=self.edit_mode)
        log.debug("preview.render: gen=%d bytes=%d", generation, len(html))
        return RenderedPreview(generation=generation, html=html)
