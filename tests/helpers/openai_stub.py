"""Test helpers to stub the OpenAI Responses client used by ``statement_parser.llm``.

Two shapes are provided:

- :class:`ScriptedOpenAI` returns scripted replies in call order.
- :class:`RoutedOpenAI` keeps one script per call kind, keyed by the JSON
  schema name in ``text.format.name`` (``"statement_info"``,
  ``"parser_agent_action"``, ``"parser_config"``) or ``"text"`` for plain
  calls such as categorization. This suits end-to-end tests where the call
  order across kinds is an implementation detail.

A scripted reply may be a ``str`` (returned verbatim), a mapping or list
(JSON-encoded), an exception instance (raised), or a callable receiving the
call kwargs and returning any of the above.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping
from typing import Any

Reply = Any


class _Resp:
    def __init__(self, text: str) -> None:
        self.output_text = text


def _materialize(reply: Reply, kwargs: dict[str, Any]) -> _Resp:
    if callable(reply) and not isinstance(reply, BaseException):
        reply = reply(kwargs)
    if isinstance(reply, BaseException):
        raise reply
    if isinstance(reply, str):
        return _Resp(reply)
    return _Resp(json.dumps(reply))


def call_kind(kwargs: Mapping[str, Any]) -> str:
    fmt = (kwargs.get("text") or {}).get("format") or {}
    return str(fmt.get("name") or "text")


class ScriptedOpenAI:
    """Minimal stub matching ``openai.OpenAI`` shape; replies are consumed in order."""

    def __init__(self, replies: Iterable[Reply], calls_out: list[dict[str, Any]] | None = None):
        self._replies = list(replies)
        self._calls = calls_out if calls_out is not None else []

        class _Responses:
            def __init__(self, outer: ScriptedOpenAI) -> None:
                self._outer = outer

            def create(self, **kwargs):
                self._outer._calls.append(kwargs)
                if not self._outer._replies:
                    raise AssertionError(f"unexpected extra call ({call_kind(kwargs)})")
                return _materialize(self._outer._replies.pop(0), kwargs)

        self.responses = _Responses(self)

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self._calls

    @property
    def remaining(self) -> int:
        return len(self._replies)


class RoutedOpenAI:
    """Stub with one reply script (list or callable) per call kind."""

    def __init__(self, routes: Mapping[str, list[Reply] | Callable[[dict[str, Any]], Reply]]):
        self._routes = {k: (list(v) if isinstance(v, list) else v) for k, v in routes.items()}
        self._calls: list[dict[str, Any]] = []

        class _Responses:
            def __init__(self, outer: RoutedOpenAI) -> None:
                self._outer = outer

            def create(self, **kwargs):
                self._outer._calls.append(kwargs)
                kind = call_kind(kwargs)
                script = self._outer._routes.get(kind)
                if script is None:
                    raise AssertionError(f"no route for call kind {kind!r}")
                if isinstance(script, list):
                    if not script:
                        raise AssertionError(f"route {kind!r} exhausted")
                    return _materialize(script.pop(0), kwargs)
                return _materialize(script, kwargs)

        self.responses = _Responses(self)

    @property
    def calls(self) -> list[dict[str, Any]]:
        return self._calls

    def calls_of(self, kind: str) -> list[dict[str, Any]]:
        return [c for c in self._calls if call_kind(c) == kind]
