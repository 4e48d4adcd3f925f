import os

import pytest
import requests

from studio import llm_client
from studio.llm_parsing import parse_ai_response
from studio.llm_prompts import build_generation_context


def _live_enabled() -> bool:
    flag = os.getenv("RUN_LIVE_LLM_TESTS", "0").lower() in {"1", "true", "yes", "on"}
    key = (os.getenv("OPENROUTER_API_KEY") or "").strip()
    return bool(flag and key and key != "your_openrouter_api_key_here")


@pytest.mark.skipif(not _live_enabled(), reason="Live LLM tests disabled or API key missing")
def test_openrouter_live_chat_completion():
    """Directly hit OpenRouter chat completions to verify connectivity and auth."""
    resp = requests.post(
        llm_client.OPENROUTER_ENDPOINT,
        headers={
            "Authorization": f"Bearer {os.getenv('OPENROUTER_API_KEY').strip()}",
            "Content-Type": "application/json",
        },
        json={
            "model": llm_client.DEFAULT_MODEL,
            "messages": [{"role": "user", "content": "Reply with the word OK."}],
            "max_tokens": 16,
        },
        timeout=60,
    )
    assert resp.status_code == 200, resp.text[:400]
    assert resp.json()["choices"][0]["message"]["content"]


@pytest.mark.skipif(not _live_enabled(), reason="Live LLM tests disabled or API key missing")
def test_openrouter_live_generation_parses():
    context = build_generation_context("A small primary button labelled Save", {}, [])
    reply = llm_client.generate_component(context)
    artifact = parse_ai_response(reply)
    assert artifact.jsx
    assert "return" in artifact.jsx
