from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from studio.css_synth import generate_updated_css
from studio.inspector import ElementInspector, Selection, StaleGenerationError
from studio.preview import PreviewRenderer, RenderedPreview
from studio.property_editor import PropertyChange, PropertyEditor, PropertySet, StyleMutation

log = logging.getLogger(__name__)

CodeUpdateCallback = Callable[[str, str], None]

PREVIEW_LOAD_ERROR = "Failed to load component preview"


@dataclass
class EditResult:
    mutation: Optional[StyleMutation]
    properties: PropertySet
    css: str


class PreviewWorkspace:
    """Live preview of one component plus its visual editing state.

    Holds the current source, the renderer, the inspector and at most one
    property editor. Edits are turned into CSS and pushed to ``on_code_update``;
    storing them is the caller's business.
    """

    def __init__(self, jsx: str, css: str, on_code_update: Optional[CodeUpdateCallback] = None, edit_mode: bool = True):
        self.jsx = jsx or ""
        self.css = css or ""
        self.on_code_update = on_code_update
        self.edit_mode = edit_mode
        self.renderer = PreviewRenderer(edit_mode=edit_mode)
        self.inspector = ElementInspector()
        self.editor: Optional[PropertyEditor] = None
        self.error: Optional[str] = None
        self._lock = threading.RLock()

    @property
    def generation(self) -> int:
        return self.renderer.generation

    @property
    def selection(self) -> Optional[Selection]:
        return self.inspector.selection

    def render(self) -> RenderedPreview:
        with self._lock:
            rendered = self.renderer.render(self.jsx, self.css)
            self.inspector.reset(rendered.generation)
            self.editor = None
            self.error = None
            return rendered

    def update_source(self, jsx: str, css: str) -> RenderedPreview:
        """New component source; the old generation's selection is dropped."""
        with self._lock:
            self.jsx = jsx or ""
            self.css = css or ""
            return self.render()

    def set_edit_mode(self, edit_mode: bool) -> None:
        """Switch inspector wiring on or off; takes effect on the next render."""
        with self._lock:
            if edit_mode == self.edit_mode:
                return
            self.edit_mode = edit_mode
            self.renderer.edit_mode = edit_mode
            self.inspector.clear_selection()
            self.editor = None
            log.info("workspace.edit_mode: %s", edit_mode)

    def on_ready(self, generation: int, elements: Iterable[Mapping[str, Any]]) -> bool:
        with self._lock:
            return self.inspector.wire(generation, elements)

    def on_load_error(self, generation: int, message: str = "") -> Optional[Dict[str, Any]]:
        with self._lock:
            if generation != self.generation:
                log.info("workspace.load_error: ignoring stale gen=%d current=%d", generation, self.generation)
                return None
            self.error = PREVIEW_LOAD_ERROR
            log.warning("workspace.load_error: gen=%d message=%s", generation, message)
            return {"error": PREVIEW_LOAD_ERROR, "retry": True}

    def select(self, generation: int, node_id: str, **details: Any) -> Selection:
        with self._lock:
            if not self.edit_mode:
                raise PermissionError("preview is not in edit mode")
            selection = self.inspector.select(generation, node_id, **details)
            editor = PropertyEditor(selection.element)
            editor.subscribe(self._on_property_change)
            self.editor = editor
            return selection

    def apply_property(self, generation: int, prop: str, value: Any) -> EditResult:
        with self._lock:
            if generation != self.generation:
                raise StaleGenerationError(generation, self.generation)
            if self.editor is None:
                raise LookupError("no element selected")
            mutation = self.editor.apply(prop, value)
            return EditResult(mutation=mutation, properties=self.editor.properties, css=self.css)

    def close_editor(self, generation: Optional[int] = None) -> None:
        with self._lock:
            self.inspector.clear_selection(generation)
            self.editor = None

    def _on_property_change(self, change: PropertyChange) -> None:
        selection = self.inspector.selection
        if selection is None:
            return
        self.css = generate_updated_css(self.css, selection.element, change.properties)
        log.info("workspace.property_change: %s=%r css_bytes=%d", change.property, change.value, len(self.css))
        if self.on_code_update is not None:
            self.on_code_update(self.jsx, self.css)


class WorkspaceRegistry:
    """In-memory preview workspaces, one per session."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: Dict[str, PreviewWorkspace] = {}

    def get(self, key: str) -> Optional[PreviewWorkspace]:
        with self._lock:
            return self._items.get(key)

    def open(
        self,
        key: str,
        jsx: str,
        css: str,
        on_code_update: Optional[CodeUpdateCallback] = None,
        edit_mode: Optional[bool] = None,
    ) -> PreviewWorkspace:
        """Workspace for ``key``, created or re-pointed at the given source.

        ``edit_mode=None`` keeps the workspace's current mode (edit for new ones).
        """
        with self._lock:
            ws = self._items.get(key)
            if ws is None:
                ws = PreviewWorkspace(jsx, css, on_code_update=on_code_update, edit_mode=True if edit_mode is None else edit_mode)
                self._items[key] = ws
                return ws
        if edit_mode is not None:
            ws.set_edit_mode(edit_mode)
        if on_code_update is not None:
            ws.on_code_update = on_code_update
        if ws.jsx != (jsx or "") or ws.css != (css or ""):
            with ws._lock:
                ws.jsx = jsx or ""
                ws.css = css or ""
        return ws

    def discard(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()
