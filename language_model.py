from __future__ import annotations

import time
from typing import Any, Dict, List, Optional, Protocol

import openai

from domain import GenerationRequest, GenerationResult
from logger import get_logger, log_exception, log_metrics

logger = get_logger(__name__)


class GenerationError(Exception):
    """Typed failure of one backend call. Carries the HTTP status the API surfaces."""

    kind = "backend"

    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class GenerationTimeout(GenerationError):
    kind = "timeout"

    def __init__(self, timeout_s: float):
        super().__init__(
            f"Timeout while calling the generation backend ({int(timeout_s)}s). Try again or reduce prompt.",
            status_code=504,
        )


class GenerationTransportError(GenerationError):
    kind = "transport"

    def __init__(self, message: str = "Could not reach the generation backend. Try again."):
        super().__init__(message, status_code=502)


class GenerationBackendError(GenerationError):
    kind = "backend"


class EmptyGenerationError(GenerationError):
    kind = "empty"

    def __init__(self, message: str = "No text returned from the generation backend"):
        super().__init__(message, status_code=500)


class GenerationBackend(Protocol):
    def generate(self, request: GenerationRequest) -> GenerationResult: ...


def _get(obj: Any, key: str, default: Any = None) -> Any:
    # SDK objects and plain dicts (recorded responses) look the same to callers
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def extract_text(response: Any) -> str:
    """Flattened output text; falls back to joining every text fragment of every output item."""
    flat = _get(response, "output_text")
    if isinstance(flat, str) and flat.strip():
        return flat.strip()
    parts: List[str] = []
    for item in _get(response, "output") or []:
        for content in _get(item, "content") or []:
            text = _get(content, "text")
            if isinstance(text, str) and text:
                parts.append(text)
    return "\n".join(parts).strip()


def extract_sources(response: Any) -> List[str]:
    """URL citations in order of appearance, duplicates dropped."""
    seen = set()
    urls: List[str] = []
    for item in _get(response, "output") or []:
        for content in _get(item, "content") or []:
            for ann in _get(content, "annotations") or []:
                if _get(ann, "type") != "url_citation":
                    continue
                url = _get(ann, "url")
                if url and url not in seen:
                    seen.add(url)
                    urls.append(url)
    return urls


def _usage(response: Any) -> Dict[str, int]:
    usage = _get(response, "usage")
    if usage is None:
        return {}
    return {
        "input_tokens": int(_get(usage, "input_tokens", 0) or 0),
        "output_tokens": int(_get(usage, "output_tokens", 0) or 0),
    }


def _status_message(exc: "openai.APIStatusError") -> str:
    body = exc.body if isinstance(exc.body, dict) else {}
    err = body.get("error") if isinstance(body.get("error"), dict) else body
    msg = err.get("message") if isinstance(err, dict) else None
    return msg or getattr(exc, "message", None) or f"Generation backend error {exc.status_code}"


class OpenAIResponsesModel:
    """Generation backend over the OpenAI Responses API. One attempt per call, no retries."""

    def __init__(self, api_key: str, model: str = "gpt-4.1", client: Optional[Any] = None) -> None:
        # max_retries=0: each pipeline stage calls the backend exactly once
        self.client = client or openai.OpenAI(api_key=api_key, max_retries=0)
        self.model = model

    def _params(self, request: GenerationRequest) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "model": self.model,
            "instructions": request.instructions,
            "input": request.input,
            "max_output_tokens": request.token_budget,
            "timeout": request.timeout_s,
        }
        if request.reasoning_effort:
            params["reasoning"] = {"effort": request.reasoning_effort}
        elif request.temperature is not None:
            params["temperature"] = request.temperature
        if request.web_search:
            params["tools"] = [{"type": "web_search"}]
        return params

    def generate(self, request: GenerationRequest) -> GenerationResult:
        t0 = time.perf_counter()
        try:
            response = self.client.responses.create(**self._params(request))
        except openai.APITimeoutError as e:
            log_exception("BACKEND_TIMEOUT", e)
            raise GenerationTimeout(request.timeout_s) from e
        except openai.APIConnectionError as e:
            log_exception("BACKEND_TRANSPORT", e)
            raise GenerationTransportError() from e
        except openai.APIStatusError as e:
            log_exception("BACKEND_STATUS", e)
            raise GenerationBackendError(_status_message(e), status_code=e.status_code) from e

        text = extract_text(response)
        usage = _usage(response)
        log_metrics("BACKEND_USAGE", {
            "stage": request.stage,
            "model": self.model,
            "duration_ms": round((time.perf_counter() - t0) * 1000, 1),
            **usage,
        })
        if not text:
            raise EmptyGenerationError()
        return GenerationResult(text=text, sources=extract_sources(response), usage=usage)
