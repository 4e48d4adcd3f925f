from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from studio.models import ChatMessage, ComponentArtifact

GENERATION_HISTORY_WINDOW = 2
GENERATION_HISTORY_CHARS = 100
REFINEMENT_HISTORY_WINDOW = 5


_RESPONSE_FORMAT = """CRITICAL: Always return your response in this EXACT format:

```jsx
function ComponentName() {
  return (
    <div className="your-tailwind-classes">
      {/* Your JSX here */}
    </div>
  );
}
```

```css
/* Any additional custom CSS here */
.custom-class {
  /* styles */
}
```"""


_GENERATION_RULES = """Rules:
1. Always return valid JSX code wrapped in ```jsx blocks
2. Use modern React functional components with hooks
3. Use Tailwind CSS classes for styling
4. Make components responsive and accessible
5. Include custom CSS in separate ```css block if needed
6. Component name should be descriptive (Button, Card, LoginForm, etc.)
7. Do not use import or export statements; React is available as a global"""


_REFINEMENT_RULES = """Rules:
1. Only modify what's requested
2. Maintain existing functionality
3. Keep the same component structure unless explicitly asked to change it
4. Return the complete updated component code
5. Use the same format as the original"""


def _recent(messages: Iterable[ChatMessage], window: int) -> List[ChatMessage]:
    items = list(messages or [])
    if window <= 0:
        return []
    return items[-window:]


def _format_history(messages: Iterable[ChatMessage], window: int, max_chars: Optional[int] = None) -> str:
    lines = []
    for m in _recent(messages, window):
        content = m.content if max_chars is None else m.content[:max_chars]
        lines.append(f"{m.role}: {content}")
    return "\n".join(lines)


def build_generation_context(
    prompt: str,
    context: Optional[Dict[str, Any]],
    messages: Iterable[ChatMessage],
) -> Dict[str, str]:
    """System/user message pair for a fresh component request."""
    ctx = context or {}
    theme = str(ctx.get("theme") or "light")
    history = _format_history(messages, GENERATION_HISTORY_WINDOW, GENERATION_HISTORY_CHARS)
    system = f"""You are an expert React component generator. Generate clean, modern React components based on user prompts.

{_RESPONSE_FORMAT}

{_GENERATION_RULES}

User preferences:
- Theme: {theme}
- Framework: React with JSX
- Styling: Tailwind CSS + Custom CSS

Previous context: {history}"""
    return {"system": system, "user": prompt}


def build_refinement_context(
    prompt: str,
    current_component: ComponentArtifact,
    messages: Iterable[ChatMessage],
) -> Dict[str, str]:
    """System/user message pair asking the model to edit the current artifact."""
    history = _format_history(messages, REFINEMENT_HISTORY_WINDOW)
    system = f"""You are refining an existing React component. Make the requested changes while preserving the component's core functionality.

Current component:
```jsx
{current_component.jsx}
```

```css
{current_component.css}
```

{_REFINEMENT_RULES}

Recent conversation: {history}"""
    return {"system": system, "user": f"Please refine the component: {prompt}"}
