"""Language-model adapter over the OpenAI Responses API.

:class:`LanguageModel` is the narrow interface the engine depends on;
:class:`OpenAIModel` implements it. Structured calls send a strict JSON-schema
``text.format`` and validate the decoded reply with a pydantic model, so a
malformed reply surfaces as ``ValueError``. Only HTTP 429 and 5xx responses are
retried.
"""

from __future__ import annotations

import json
import random
import time
from collections.abc import Mapping
from typing import Any, Protocol, TypeVar

from openai import OpenAI
from openai.types.responses import ResponseTextConfigParam
from pydantic import BaseModel, ValidationError

from .logging_setup import get_logger

# ---- Tunables (private) ------------------------------------------------------

_MAX_ATTEMPTS: int = 3
_BACKOFF_SCHEDULE_SEC: tuple[float, ...] = (0.5, 2.0)
_JITTER_PCT: float = 0.20

_logger = get_logger("statement_parser.llm")

ModelT = TypeVar("ModelT", bound=BaseModel)


class LanguageModel(Protocol):
    def generate_structured(
        self,
        *,
        instructions: str,
        content: str,
        response_format: Mapping[str, Any],
        model_cls: type[ModelT],
    ) -> ModelT: ...

    def generate_text(self, *, instructions: str, content: str) -> str: ...


# ---- Internal helpers --------------------------------------------------------


def _create_client() -> OpenAI:
    return OpenAI()


def _is_retryable(exc: BaseException) -> bool:
    """Return True only for HTTP 429 and 5xx errors."""

    sc = getattr(exc, "status_code", None)
    return isinstance(sc, int) and (sc == 429 or 500 <= sc < 600)


def _sleep_backoff(attempt_no: int) -> None:
    if attempt_no - 1 < len(_BACKOFF_SCHEDULE_SEC):
        base = _BACKOFF_SCHEDULE_SEC[attempt_no - 1]
    else:
        base = _BACKOFF_SCHEDULE_SEC[-1]
    jitter = base * _JITTER_PCT
    time.sleep(max(0.0, base + random.uniform(-jitter, jitter)))


def extract_response_text(resp: Any) -> str:
    """Locate the text output of a Responses API result.

    Prefers ``resp.output_text`` and falls back to
    ``resp.output[0].content[0].text``. Raises ``ValueError`` when neither is
    present.
    """

    text: str | None = getattr(resp, "output_text", None)
    if not text:
        try:
            first = resp.output[0] if getattr(resp, "output", None) else None
            content = getattr(first, "content", None)
            if content:
                txt_obj = getattr(content[0], "text", None)
                if isinstance(txt_obj, str):
                    text = txt_obj
                else:
                    maybe_val = getattr(txt_obj, "value", None)
                    if isinstance(maybe_val, str):
                        text = maybe_val
        except (AttributeError, IndexError, TypeError):
            text = None
    if not text or not isinstance(text, str):
        raise ValueError("Unexpected Responses API shape; unable to locate text output")
    return text


# ---- Adapter -----------------------------------------------------------------


class OpenAIModel:
    """:class:`LanguageModel` backed by ``OpenAI().responses.create``.

    The client is created lazily on first call so constructing the adapter has
    no side effects (no environment reads, no network).
    """

    def __init__(self, model: str, *, client: OpenAI | None = None) -> None:
        self.model = model
        self._client = client

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = _create_client()
        return self._client

    def _create(self, **kwargs: Any) -> Any:
        attempt = 1
        while True:
            t0 = time.perf_counter()
            try:
                resp = self.client.responses.create(model=self.model, **kwargs)
            except Exception as e:  # noqa: BLE001 - classified below
                if attempt < _MAX_ATTEMPTS and _is_retryable(e):
                    _logger.warning(
                        "llm:retry model=%s attempt=%d status=%s",
                        self.model,
                        attempt,
                        getattr(e, "status_code", None),
                    )
                    _sleep_backoff(attempt)
                    attempt += 1
                    continue
                raise
            _logger.debug(
                "llm:call model=%s attempt=%d latency_ms=%d",
                self.model,
                attempt,
                int((time.perf_counter() - t0) * 1000),
            )
            return resp

    def generate_text(self, *, instructions: str, content: str) -> str:
        resp = self._create(instructions=instructions, input=content)
        return extract_response_text(resp)

    def generate_structured(
        self,
        *,
        instructions: str,
        content: str,
        response_format: Mapping[str, Any],
        model_cls: type[ModelT],
    ) -> ModelT:
        text_cfg: ResponseTextConfigParam = {"format": response_format}  # type: ignore[typeddict-item]
        resp = self._create(instructions=instructions, input=content, text=text_cfg)
        raw = extract_response_text(resp)
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError("Model output was not valid JSON per the requested schema") from e
        try:
            return model_cls.model_validate(decoded)
        except ValidationError as e:
            raise ValueError(f"Model output failed validation: {e}") from e


__all__ = ["LanguageModel", "OpenAIModel", "extract_response_text"]
