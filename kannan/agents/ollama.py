"""Minimal Ollama client for local inference."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
import httpx
import time


@dataclass
class OllamaResult:
    text: str
    duration_ms: float
    ok: bool
    error: Optional[str] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0


class OllamaClient:
    def __init__(self, base_url: str = "http://localhost:11434", timeout_seconds: float = 600.0) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def list_models(self) -> list[dict]:
        try:
            with httpx.Client(timeout=5.0) as client:
                resp = client.get(f"{self.base_url}/api/tags")
                resp.raise_for_status()
                return resp.json().get("models", [])
        except (httpx.HTTPError, ValueError):
            return []

    def generate(
        self,
        model: str,
        prompt: str,
        system: Optional[str] = None,
        temperature: float = 0.2,
    ) -> OllamaResult:
        payload: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": temperature},
        }
        if system:
            payload["system"] = system

        start = time.perf_counter()
        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                resp = client.post(f"{self.base_url}/api/generate", json=payload)
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            duration = (time.perf_counter() - start) * 1000
            return OllamaResult(text="", duration_ms=duration, ok=False, error=str(exc))
        duration = (time.perf_counter() - start) * 1000
        return OllamaResult(
            text=(data.get("response") or "").strip(),
            duration_ms=duration,
            ok=True,
            prompt_tokens=int(data.get("prompt_eval_count") or 0),
            completion_tokens=int(data.get("eval_count") or 0),
        )
