import re

from studio.preview import (
    CANDIDATE_COMPONENTS,
    PLACEHOLDER_COMPONENT,
    PreviewRenderer,
    clean_jsx,
    generate_preview_html,
)


def test_clean_jsx_strips_imports_and_exports():
    src = (
        "import React, { useState } from 'react';\n"
        'import styles from "./x.css";\n'
        "import './global.css';\n"
        "export default function Card() {\n"
        "  return <div/>;\n"
        "}\n"
        "export const helper = 1;\n"
    )
    out = clean_jsx(src)
    assert "import" not in out
    assert "export" not in out
    assert out.startswith("function Card()")
    assert "const helper = 1;" in out


def test_clean_jsx_drops_trailing_default_export_of_name():
    out = clean_jsx("function Button() { return <button/>; }\n\nexport default Button;\n")
    assert out == "function Button() { return <button/>; }"


def test_clean_jsx_drops_export_lists():
    src = "function Card() { return <div/>; }\nexport { Card };\nexport { Card as Tile } from './card';\n"
    assert clean_jsx(src) == "function Card() { return <div/>; }"


def test_clean_jsx_binds_anonymous_default_export():
    assert clean_jsx("export default () => <div>Hi</div>;\n") == "const Component = () => <div>Hi</div>;"
    assert clean_jsx("export default function () { return <p/>; }") == "const Component = function () { return <p/>; }"
    assert clean_jsx("export default memo(Card);") == "const Component = memo(Card);"


def test_empty_source_renders_placeholder():
    html = generate_preview_html("", "")
    assert "No component generated yet" in html
    assert "function Component()" in PLACEHOLDER_COMPONENT


def test_document_structure():
    html = generate_preview_html("function Card() { return <div className='card'>Hi</div>; }", ".card { color: red; }", generation=3)
    # libraries load before the component script
    react_at = html.index("react@18/umd/react.development.js")
    dom_at = html.index("react-dom@18/umd/react-dom.development.js")
    babel_at = html.index("@babel/standalone")
    component_at = html.index('type="text/babel"')
    assert react_at < component_at and dom_at < component_at and babel_at < component_at
    assert html.count('id="root"') == 1
    assert len(re.findall(r"<style>", html)) == 1
    style = html.split("<style>", 1)[1].split("</style>", 1)[0]
    assert style.rstrip().endswith(".card { color: red; }")
    assert "function Card() { return <div className='card'>Hi</div>; }" in html
    assert '"studio-preview"' in html
    assert "generation: 3" in html


def test_candidates_are_resolved_in_order():
    html = generate_preview_html("function Navigation() { return <nav/>; }", "")
    positions = [html.index(f'typeof {name} !== "undefined"') for name in CANDIDATE_COMPONENTS]
    assert positions == sorted(positions)
    assert CANDIDATE_COMPONENTS == ("Component", "Button", "Card", "LoginForm", "Navigation", "TestComponent")
    assert "StudioUnresolved" in html


def test_error_boundary_and_panel_present():
    html = generate_preview_html("function Component() { throw new Error('x'); }", "")
    assert "getDerivedStateFromError" in html
    assert "<details>" in html
    assert "preview-error" in html


def test_closing_script_tag_in_source_is_escaped():
    jsx = 'function Component() { return <div>{"</script><script>alert(1)</script>"}</div>; }'
    html = generate_preview_html(jsx, "")
    body = html.split('type="text/babel"', 1)[1]
    script = body.split("</script>", 1)[0]
    assert "<\\/script><script>alert(1)<\\/script>" in script


def test_edit_mode_controls_inspector():
    assert "__studioInspector" in generate_preview_html("function Component() { return null; }", "", edit_mode=True)
    off = generate_preview_html("function Component() { return null; }", "", edit_mode=False)
    assert "window.__studioInspector = " not in off
    assert "data-studio-node" not in off


def test_inspector_skips_document_level_tags():
    html = generate_preview_html("function Component() { return null; }", "")
    assert "HTML: true, HEAD: true, BODY: true, SCRIPT: true" in html


def test_hover_outline_is_saved_and_restored_in_the_preview():
    html = generate_preview_html("function Component() { return null; }", "")
    assert 'el.addEventListener("mouseenter"' in html
    assert 'el.addEventListener("mouseleave"' in html
    assert "if (selectedId !== id) { restore(id, el); }" in html


def test_renderer_bumps_generation_and_is_otherwise_deterministic():
    renderer = PreviewRenderer()
    first = renderer.render("function Component() { return <p/>; }", ".p{}")
    second = renderer.render("function Component() { return <p/>; }", ".p{}")
    assert (first.generation, second.generation) == (1, 2)
    assert renderer.generation == 2
    assert first.html != second.html
    assert first.html.replace("generation: 1", "generation: 2") == second.html


def test_renderer_never_raises_on_odd_input():
    renderer = PreviewRenderer()
    for jsx, css in [("{{ }}", "{% raw %}"), ("</style>", "</style><b>"), ("\x00", "")]:
        renderer.render(jsx, css)
