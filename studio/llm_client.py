from __future__ import annotations

import logging
import os
import threading
import time
from typing import Any, Dict, List, Optional

import requests

log = logging.getLogger(__name__)


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes", "on"}


OPENROUTER_API_KEY = os.getenv("OPENROUTER_API_KEY", "").strip()
_ENV_OPENROUTER_API_KEY = OPENROUTER_API_KEY
OPENROUTER_BASE_URL = os.getenv("OPENROUTER_BASE_URL", "https://openrouter.ai/api/v1").strip().rstrip("/")
OPENROUTER_ENDPOINT = f"{OPENROUTER_BASE_URL}/chat/completions"
DEFAULT_MODEL = os.getenv("AI_MODEL", "meta-llama/llama-3.1-8b-instruct:free").strip()
FALLBACK_MODELS: List[str] = [
    m.strip() for m in os.getenv("OPENROUTER_FALLBACK_MODELS", "").split(",") if m.strip()
]
ENABLE_AI_FALLBACK = _env_flag("ENABLE_AI_FALLBACK")

DEFAULT_MAX_TOKENS = 2000
DEFAULT_TEMPERATURE = 0.7

try:
    LLM_TIMEOUT_SECS = int(os.getenv("LLM_TIMEOUT_SECS", "60"))
except ValueError:
    LLM_TIMEOUT_SECS = 60

_OPENROUTER_BACKOFF_LOCK = threading.Lock()
_OPENROUTER_BACKOFF_UNTIL = 0.0
_OPENROUTER_BACKOFF_DELAY = 0.0
try:
    _OPENROUTER_BACKOFF_INITIAL = float(os.getenv("OPENROUTER_BACKOFF_INITIAL", "3.0") or 3.0)
except ValueError:
    _OPENROUTER_BACKOFF_INITIAL = 3.0
try:
    _OPENROUTER_BACKOFF_MAX = float(os.getenv("OPENROUTER_BACKOFF_MAX", "45.0") or 45.0)
except ValueError:
    _OPENROUTER_BACKOFF_MAX = 45.0
_OPENROUTER_BACKOFF_FACTOR = 1.5


class LLMError(RuntimeError):
    """The provider could not produce a reply and no fallback applies."""


def _testing_stub_enabled() -> bool:
    """True under pytest unless live tests are requested or a test patched in a key."""
    if not os.getenv("PYTEST_CURRENT_TEST"):
        return False
    if _env_flag("RUN_LIVE_LLM_TESTS"):
        return False
    if OPENROUTER_API_KEY != _ENV_OPENROUTER_API_KEY:
        return False
    return True


def _openrouter_sleep_if_needed() -> None:
    now = time.time()
    wait_for = 0.0
    with _OPENROUTER_BACKOFF_LOCK:
        if _OPENROUTER_BACKOFF_UNTIL > now:
            wait_for = _OPENROUTER_BACKOFF_UNTIL - now
    if wait_for > 0:
        log.info("openrouter.backoff: waiting %.2fs before next request", wait_for)
        time.sleep(min(wait_for, _OPENROUTER_BACKOFF_MAX))


def _openrouter_register_rate_limit(retry_after: Optional[str]) -> float:
    delay: Optional[float] = None
    if retry_after:
        try:
            delay = float(retry_after)
        except ValueError:
            delay = None
    global _OPENROUTER_BACKOFF_DELAY, _OPENROUTER_BACKOFF_UNTIL
    with _OPENROUTER_BACKOFF_LOCK:
        base = _OPENROUTER_BACKOFF_DELAY or _OPENROUTER_BACKOFF_INITIAL
        if delay is None:
            delay = base * _OPENROUTER_BACKOFF_FACTOR
        delay = max(_OPENROUTER_BACKOFF_INITIAL, min(delay, _OPENROUTER_BACKOFF_MAX))
        _OPENROUTER_BACKOFF_DELAY = delay
        _OPENROUTER_BACKOFF_UNTIL = time.time() + delay
    log.warning("openrouter.backoff: rate limited; backing off for %.2fs", delay)
    return delay


def _openrouter_reset_backoff() -> None:
    global _OPENROUTER_BACKOFF_DELAY, _OPENROUTER_BACKOFF_UNTIL
    with _OPENROUTER_BACKOFF_LOCK:
        _OPENROUTER_BACKOFF_DELAY = 0.0
        _OPENROUTER_BACKOFF_UNTIL = 0.0


def status() -> Dict[str, Any]:
    if _testing_stub_enabled():
        return {
            "provider": None,
            "model": None,
            "has_token": False,
            "using": "stub",
            "testing": True,
            "fallback": ENABLE_AI_FALLBACK,
        }
    if OPENROUTER_API_KEY:
        return {
            "provider": "openrouter",
            "model": DEFAULT_MODEL,
            "has_token": True,
            "using": "openrouter",
            "fallback": ENABLE_AI_FALLBACK,
        }
    return {
        "provider": None,
        "model": None,
        "has_token": False,
        "using": "fallback" if ENABLE_AI_FALLBACK else "none",
        "fallback": ENABLE_AI_FALLBACK,
    }


def probe() -> Dict[str, Any]:
    if _testing_stub_enabled():
        return {"ok": False, "using": "stub", "testing": True}
    if OPENROUTER_API_KEY:
        return {"ok": True, "using": "openrouter"}
    return {"ok": ENABLE_AI_FALLBACK, "using": "fallback" if ENABLE_AI_FALLBACK else "none"}


def _send_openrouter(payload: Dict[str, Any]) -> Optional[requests.Response]:
    _openrouter_sleep_if_needed()
    headers = {
        "Authorization": f"Bearer {OPENROUTER_API_KEY}",
        "Content-Type": "application/json",
        "X-Title": "component-studio",
    }
    try:
        response = requests.post(OPENROUTER_ENDPOINT, headers=headers, json=payload, timeout=LLM_TIMEOUT_SECS)
    except requests.RequestException as exc:
        log.warning("openrouter: request error model=%s err=%r", payload.get("model"), exc)
        return None
    if response.status_code == 429:
        _openrouter_register_rate_limit(response.headers.get("Retry-After"))
    elif response.status_code == 200:
        _openrouter_reset_backoff()
    return response


def _extract_content(response: requests.Response) -> Optional[str]:
    try:
        data = response.json()
    except ValueError:
        log.warning("openrouter: non-JSON HTTP body")
        return None
    try:
        text = data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        text = None
    if not isinstance(text, str) or not text.strip():
        log.warning("openrouter: empty response text")
        return None
    return text


def _chat(messages: List[Dict[str, str]], model: str, temperature: float, max_tokens: int) -> Optional[str]:
    """Call OpenRouter with the primary model, then each fallback model; None on failure."""
    body: Dict[str, Any] = {
        "model": model,
        "messages": messages,
        "max_tokens": max_tokens,
        "temperature": temperature,
    }
    candidates = [model] + [m for m in FALLBACK_MODELS if m and m != model]
    for idx, candidate in enumerate(candidates):
        if idx > 0:
            log.warning("openrouter: model '%s' failed; retrying with fallback '%s'", model, candidate)
        payload = dict(body)
        payload["model"] = candidate
        resp = _send_openrouter(payload)
        if resp is None:
            continue
        if resp.status_code != 200:
            try:
                msg = resp.text[:400]
            except Exception:
                msg = str(resp.status_code)
            log.warning("openrouter: HTTP %s model=%s: %s", resp.status_code, candidate, msg)
            continue
        text = _extract_content(resp)
        if text:
            log.info("openrouter: reply model=%s chars=%d", candidate, len(text))
            return text
    return None


def _complete(context: Dict[str, str], options: Optional[Dict[str, Any]], purpose: str) -> str:
    opts = options or {}
    user_text = context.get("user", "")
    if _testing_stub_enabled():
        return _call_testing_stub(user_text)
    if not OPENROUTER_API_KEY:
        if ENABLE_AI_FALLBACK:
            log.info("llm.%s: no API key; serving fallback component", purpose)
            return generate_fallback_component(user_text)
        raise LLMError("Missing LLM credentials")

    messages = [
        {"role": "system", "content": context.get("system", "")},
        {"role": "user", "content": user_text},
    ]
    text = _chat(
        messages,
        model=str(opts.get("model") or DEFAULT_MODEL),
        temperature=DEFAULT_TEMPERATURE if opts.get("temperature") is None else float(opts["temperature"]),
        max_tokens=int(opts.get("max_tokens") or DEFAULT_MAX_TOKENS),
    )
    if text is not None:
        return text
    if ENABLE_AI_FALLBACK:
        log.warning("llm.%s: provider failed; serving fallback component", purpose)
        return generate_fallback_component(user_text)
    raise LLMError(f"Failed to {purpose} component")


def generate_component(context: Dict[str, str], options: Optional[Dict[str, Any]] = None) -> str:
    """Return the raw model reply for a generation context ({system, user})."""
    return _complete(context, options, "generate")


def refine_component(context: Dict[str, str], options: Optional[Dict[str, Any]] = None) -> str:
    """Return the raw model reply for a refinement context ({system, user})."""
    return _complete(context, options, "refine")


def _call_testing_stub(prompt: str) -> str:
    """Deterministic reply for local development and tests."""
    label = (prompt or "Stub Component").replace("`", "").replace("{", "").replace("}", "")[:40]
    return (
        "```jsx\n"
        "function Component() {\n"
        f"  return <div className=\"stub-card\">{label}</div>;\n"
        "}\n"
        "```\n\n"
        "```css\n"
        ".stub-card { padding: 16px; }\n"
        "```"
    )


_FALLBACK_BUTTON = """```jsx
function Button() {
  return (
    <button className="px-6 py-3 bg-gradient-to-r from-blue-600 to-purple-600 text-white rounded-lg font-semibold shadow-lg hover:shadow-xl transition-all duration-200 focus:outline-none focus:ring-2 focus:ring-blue-500">
      Click Me
    </button>
  );
}
```

```css
.btn-hover:hover {
  transform: translateY(-2px);
  box-shadow: 0 10px 25px rgba(59, 130, 246, 0.4);
}
```"""

_FALLBACK_CARD = """```jsx
function Card() {
  return (
    <div className="max-w-sm mx-auto bg-white rounded-2xl shadow-xl overflow-hidden">
      <div className="bg-gradient-to-r from-purple-500 to-pink-500 h-48 flex items-center justify-center">
        <div className="text-white text-6xl">*</div>
      </div>
      <div className="p-6">
        <h2 className="text-xl font-bold text-gray-900 mb-2">Beautiful Card</h2>
        <p className="text-gray-600 mb-4 leading-relaxed">
          A card component with a gradient header and smooth hover animation.
        </p>
        <button className="w-full bg-gradient-to-r from-blue-500 to-purple-600 text-white py-3 px-6 rounded-lg font-semibold">
          Learn More
        </button>
      </div>
    </div>
  );
}
```

```css
.card-hover:hover {
  transform: translateY(-8px) scale(1.02);
  box-shadow: 0 25px 50px rgba(0, 0, 0, 0.15);
}
```"""

_FALLBACK_LOGIN_FORM = """```jsx
function LoginForm() {
  return (
    <div className="max-w-md mx-auto bg-white p-8 rounded-2xl shadow-2xl border border-gray-100">
      <div className="text-center mb-8">
        <h2 className="text-2xl font-bold text-gray-900">Welcome Back</h2>
        <p className="text-gray-600 mt-2">Sign in to your account</p>
      </div>
      <form className="space-y-6">
        <div>
          <label className="block text-sm font-semibold text-gray-700 mb-2">Email Address</label>
          <input type="email" placeholder="Enter your email" className="w-full px-4 py-3 border-2 border-gray-200 rounded-xl" />
        </div>
        <div>
          <label className="block text-sm font-semibold text-gray-700 mb-2">Password</label>
          <input type="password" placeholder="Enter your password" className="w-full px-4 py-3 border-2 border-gray-200 rounded-xl" />
        </div>
        <button type="submit" className="w-full bg-gradient-to-r from-blue-600 to-purple-600 text-white py-3 px-6 rounded-xl font-semibold">
          Sign In
        </button>
      </form>
    </div>
  );
}
```

```css
.form-input:focus {
  transform: translateY(-1px);
  box-shadow: 0 4px 12px rgba(59, 130, 246, 0.15);
}
```"""

_FALLBACK_NAVIGATION = """```jsx
function Navigation() {
  return (
    <nav className="bg-white/95 shadow-lg sticky top-0 z-50 border-b border-gray-100">
      <div className="max-w-7xl mx-auto px-4 flex justify-between items-center h-16">
        <h1 className="text-xl font-bold text-blue-600">Brand</h1>
        <div className="flex items-center space-x-8">
          <a href="#" className="nav-link text-gray-700 hover:text-blue-600 font-medium">Home</a>
          <a href="#" className="nav-link text-gray-700 hover:text-blue-600 font-medium">About</a>
          <a href="#" className="nav-link text-gray-700 hover:text-blue-600 font-medium">Services</a>
          <button className="bg-blue-600 text-white px-6 py-2 rounded-lg font-semibold">Get Started</button>
        </div>
      </div>
    </nav>
  );
}
```

```css
.nav-link { position: relative; }
.nav-link:hover::after {
  content: '';
  position: absolute;
  left: 0;
  bottom: -4px;
  width: 100%;
  height: 2px;
  background: linear-gradient(90deg, #3b82f6, #8b5cf6);
}
```"""


def _fallback_default(prompt: str) -> str:
    excerpt = prompt[:40] + ("..." if len(prompt) > 40 else "")
    excerpt = excerpt.replace("`", "'").replace("{", "(").replace("}", ")").replace("<", "(").replace(">", ")")
    return f"""```jsx
function Component() {{
  return (
    <div className="max-w-lg mx-auto bg-gradient-to-br from-blue-50 to-indigo-100 p-8 rounded-3xl shadow-2xl border border-blue-200 text-center">
      <h2 className="text-2xl font-bold text-gray-800 mb-3">AI Generated Component</h2>
      <p className="text-gray-600 mb-6 leading-relaxed">
        Created from your prompt: <span className="font-semibold text-blue-600">"{excerpt}"</span>
      </p>
      <button className="w-full bg-gradient-to-r from-blue-600 to-purple-600 text-white py-3 px-8 rounded-xl font-semibold">
        Get Started
      </button>
    </div>
  );
}}
```

```css
.component-glow {{
  box-shadow: 0 0 30px rgba(59, 130, 246, 0.3);
}}
```"""


def generate_fallback_component(prompt: str) -> str:
    """Canned fenced reply picked by keyword; used when the provider is unavailable."""
    lower = (prompt or "").lower()
    if "button" in lower:
        return _FALLBACK_BUTTON
    if "card" in lower:
        return _FALLBACK_CARD
    if "form" in lower or "login" in lower:
        return _FALLBACK_LOGIN_FORM
    if "nav" in lower or "header" in lower:
        return _FALLBACK_NAVIGATION
    return _fallback_default(prompt or "")
