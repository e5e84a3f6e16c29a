"""
Test doubles shared by unit and integration tests.
"""
import json
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from adlingo.core.llm.base import LLMProvider, LLMResponse
from adlingo.core.token_counter import TokenCounter


ScriptedReply = Union[Dict[str, Any], str, Exception, Callable[[Dict[str, Any]], Any]]


class FakeProvider(LLMProvider):
    """
    Provider returning scripted replies in order.

    A reply can be a dict (sent back as JSON), a raw string, an exception
    (raised) or a callable receiving the call record and returning one of
    those. When the script runs out, ``default`` is used.
    """

    def __init__(self, replies: Optional[List[ScriptedReply]] = None,
                 default: Optional[ScriptedReply] = None):
        super().__init__(model="fake-model")
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, prompt, system_prompt=None, images=None, json_mode=False,
                       temperature=None, max_tokens=None, timeout=30) -> LLMResponse:
        call = {
            'prompt': prompt,
            'system_prompt': system_prompt,
            'images': images,
            'json_mode': json_mode,
            'max_tokens': max_tokens,
        }
        self.calls.append(call)

        reply = self.replies.pop(0) if self.replies else self.default
        if reply is None:
            raise AssertionError("FakeProvider ran out of scripted replies")
        if callable(reply):
            reply = reply(call)
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, str) else json.dumps(reply, ensure_ascii=False)
        return LLMResponse(content=content, model=self.model)


def uppercase_translation(call: Dict[str, Any]) -> Dict[str, str]:
    """Scripted dispatch reply: every unit value uppercased."""
    return {key: value.upper() for key, value in json.loads(call['prompt']).items()}


def score_reply(score: int, **fields) -> Dict[str, Any]:
    """Scripted quality payload."""
    return {'quality_score': score, 'overall_assessment': f"Scored {score}", **fields}


class CharTokenCounter(TokenCounter):
    """Offline counter: one token per four characters."""

    def count(self, text: str) -> int:
        return len(text or "") // 4 + 1


class RecordingHandler:
    """
    httpx.MockTransport handler routing on (method, path).

    Routes map to a Response, a list of Responses served in order (the last
    one repeats) or a callable(request) -> Response.
    """

    def __init__(self, routes: Dict[tuple, Any]):
        self.routes = {key: list(value) if isinstance(value, list) else value
                       for key, value in routes.items()}
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={'error': f"no route {request.method} {request.url.path}"})
        if isinstance(route, list):
            return route.pop(0) if len(route) > 1 else route[0]
        if callable(route):
            return route(request)
        return route

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)
