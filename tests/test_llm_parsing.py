from studio.llm_parsing import PLACEHOLDER_CSS, PLACEHOLDER_JSX, estimate_tokens, parse_ai_response


def test_extracts_fenced_jsx_and_css():
    reply = (
        "Here you go:\n"
        "```jsx\n"
        "  function Button() { return <button className=\"btn\">Hi</button>; }  \n"
        "```\n"
        "and some styles\n"
        "```css\n"
        ".btn { color: red; }\n"
        "```\n"
    )
    out = parse_ai_response(reply)
    assert out.jsx == 'function Button() { return <button className="btn">Hi</button>; }'
    assert out.css == ".btn { color: red; }"
    assert out.props == {}


def test_first_block_of_each_kind_wins():
    reply = "```tsx\nfunction A() { return null; }\n```\n```js\nfunction B() { return null; }\n```\n```css\n.a{}\n```\n```css\n.b{}\n```"
    out = parse_ai_response(reply)
    assert out.jsx == "function A() { return null; }"
    assert out.css == ".a{}"


def test_accepts_every_script_language_tag():
    for tag in ("jsx", "tsx", "javascript", "typescript", "js", "ts"):
        out = parse_ai_response(f"```{tag}\nfunction Card() {{ return <div/>; }}\n```")
        assert out.jsx == "function Card() { return <div/>; }", tag


def test_no_fences_uses_whole_reply():
    reply = "  function Component() { return <p>plain</p>; }\n"
    out = parse_ai_response(reply)
    assert out.jsx == "function Component() { return <p>plain</p>; }"
    assert out.css == PLACEHOLDER_CSS


def test_empty_and_non_string_replies_become_placeholders():
    for reply in ("", "   \n  ", None):
        out = parse_ai_response(reply)
        assert out.jsx == PLACEHOLDER_JSX
        assert out.css == PLACEHOLDER_CSS
        assert out.props == {}


def test_css_only_reply_keeps_whole_text_as_jsx():
    reply = "```css\n.only { margin: 0; }\n```"
    out = parse_ai_response(reply)
    assert out.css == ".only { margin: 0; }"
    assert out.jsx == reply


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2
    assert estimate_tokens(None) == 0


def test_empty_jsx_fence_salvages_function_text():
    reply = "Here is a function that will return a card:\n```jsx\n  \n```"
    out = parse_ai_response(reply)
    assert out.jsx == reply.strip()
    assert out.css == PLACEHOLDER_CSS


def test_empty_jsx_fence_without_function_gives_placeholder():
    out = parse_ai_response("Sorry, nothing to show.\n```jsx\n\n```")
    assert out.jsx == PLACEHOLDER_JSX
