"""Client for text LLMs used by the grouping engine.

Prefers an Ollama server (OLLAMA_HOST, chat endpoint with JSON output).
When OLLAMA_HOST is not configured and GEMINI_API_KEY is, Gemini is used
instead. generate_structured() runs a prompt and extracts a JSON object
from the answer.

Notes / assumptions:
- OLLAMA_API_KEY, when set, is sent as a bearer token (hosted Ollama).
- OLLAMA_TIMEOUT bounds a single HTTP request; the grouping engine itself
  applies no timeout.
"""
from __future__ import annotations
import os
import json
import re
import time
import logging
from typing import Any, Dict, Optional

import requests
from dotenv import load_dotenv

log = logging.getLogger("llm")

load_dotenv()

# Provider state
_PROVIDER: Optional[str] = None  # 'ollama' | 'gemini' | None
_LLM_AVAILABLE = False

OLLAMA_DEFAULT_HOST = "http://localhost:11434"
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash")


def _init_client() -> None:
    """Pick the provider for text generation.

    Sets _PROVIDER and _LLM_AVAILABLE.
    """
    global _PROVIDER, _LLM_AVAILABLE
    if _PROVIDER is not None:
        return
    if os.getenv("OLLAMA_HOST") or not os.getenv("GEMINI_API_KEY"):
        _PROVIDER = "ollama"
        _LLM_AVAILABLE = True
        log.info("Using Ollama for text LLMs (host=%s, model=%s)",
                 os.getenv("OLLAMA_HOST", OLLAMA_DEFAULT_HOST), os.getenv("OLLAMA_MODEL", OLLAMA_MODEL))
        return
    try:
        import google.generativeai as genai
        genai.configure(api_key=os.getenv("GEMINI_API_KEY"))
        _PROVIDER = "gemini"
        _LLM_AVAILABLE = True
        log.info("Using Gemini for text LLMs (model=%s)", os.getenv("GEMINI_MODEL", GEMINI_MODEL))
    except Exception as e:
        log.error("Failed to initialize Gemini client: %s", e)
        _PROVIDER = None
        _LLM_AVAILABLE = False


def reset_client() -> None:
    """Forget the selected provider so the environment is read again."""
    global _PROVIDER, _LLM_AVAILABLE
    _PROVIDER = None
    _LLM_AVAILABLE = False


_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_LINE_COMMENT = re.compile(r"(?<![:\"])//.*")
_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")


def extract_json(text: str) -> Optional[Dict[str, Any]]:
    """Parse a JSON object from model output, tolerating fences and comments."""
    cleaned = _FENCE.sub("", text or "")
    cleaned = _BLOCK_COMMENT.sub("", _LINE_COMMENT.sub("", cleaned)).strip()
    if not cleaned:
        return None
    try:
        data = json.loads(cleaned)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


# Simple metrics
_METRICS = {
    "requests": 0,
    "errors": 0,
    "last_latency_ms": None,
}


def _call_ollama(prompt: str, system: str, temperature: float, max_output_tokens: int) -> str:
    """Call the Ollama chat endpoint in JSON mode and return the message text."""
    host = os.getenv("OLLAMA_HOST", OLLAMA_DEFAULT_HOST).rstrip("/")
    headers = {"Content-Type": "application/json"}
    api_key = os.getenv("OLLAMA_API_KEY")
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})
    payload = {
        "model": os.getenv("OLLAMA_MODEL", OLLAMA_MODEL),
        "messages": messages,
        "format": "json",
        "stream": False,
        "options": {"temperature": float(temperature), "num_predict": int(max_output_tokens)},
    }
    timeout = float(os.getenv("OLLAMA_TIMEOUT", "120"))
    resp = requests.post(f"{host}/api/chat", headers=headers, json=payload, timeout=timeout)
    resp.raise_for_status()
    body = resp.json()
    message = body.get("message") if isinstance(body, dict) else None
    if isinstance(message, dict) and isinstance(message.get("content"), str):
        return message["content"]
    return json.dumps(body)


def _call_gemini(prompt: str, system: str, temperature: float, max_output_tokens: int) -> str:
    import google.generativeai as genai
    model = genai.GenerativeModel(
        os.getenv("GEMINI_MODEL", GEMINI_MODEL),
        system_instruction=system or None,
    )
    response = model.generate_content(
        prompt,
        generation_config={
            "temperature": temperature,
            "max_output_tokens": max_output_tokens,
            "response_mime_type": "application/json",
        },
    )
    return getattr(response, "text", "") or ""


def generate_structured(prompt: str, system: str = "", temperature: float = 0.2, max_retries: int = 0,
                        max_output_tokens: int = 2000) -> Dict[str, Any]:
    """Generates a structured (JSON) response from a prompt.

    Returns an envelope {success, data, raw, error, llm_enabled}; errors are
    reported in the envelope, never raised.
    """
    _init_client()
    if not _LLM_AVAILABLE or _PROVIDER is None:
        return {
            "success": False,
            "data": {},
            "raw": "",
            "error": "Failed to generate: LLM disabled (no OLLAMA_HOST or GEMINI_API_KEY)",
            "llm_enabled": False,
        }

    attempt = 0
    last_error = None
    while attempt <= max_retries:
        start = time.time()
        try:
            _METRICS["requests"] += 1
            if _PROVIDER == "ollama":
                raw_text = _call_ollama(prompt, system, temperature, max_output_tokens)
            else:
                raw_text = _call_gemini(prompt, system, temperature, max_output_tokens)

            duration_ms = int((time.time() - start) * 1000)
            _METRICS["last_latency_ms"] = duration_ms
            log.info("LLM (%s) request success, latency=%dms", _PROVIDER, duration_ms)

            data = extract_json(raw_text)
            if data is not None:
                return {"success": True, "data": data, "raw": raw_text, "error": None, "llm_enabled": True}
            log.warning("LLM (%s) returned no JSON object: %.200s", _PROVIDER, raw_text)
            last_error = "Invalid JSON response from AI"
        except requests.ConnectionError as e:
            last_error = f"ECONNREFUSED: {e}"
            _METRICS["errors"] += 1
            log.error("LLM (%s) connection failed: %s", _PROVIDER, e)
        except Exception as e:
            last_error = str(e)
            _METRICS["errors"] += 1
            log.exception("LLM (%s) request failed: %s", _PROVIDER, e)
        attempt += 1
        if attempt <= max_retries:
            time.sleep(0.5 * attempt)

    return {
        "success": False,
        "data": {},
        "raw": "",
        "error": last_error or "unknown",
        "llm_enabled": True,
    }


def llm_available() -> bool:
    _init_client()
    return _LLM_AVAILABLE


def llm_provider() -> Optional[str]:
    _init_client()
    return _PROVIDER


def llm_metrics() -> Dict[str, Any]:
    """Return basic metrics for observability."""
    return dict(_METRICS)
