"""Model backends: the capability that turns an instruction and input into text."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Protocol, runtime_checkable

from .client import AIClient

LOGGER = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_OUTPUT_TOKENS = 4000


@runtime_checkable
class ModelBackend(Protocol):
    """Produces text in one shot or as incremental fragments.

    In streaming mode the result is delivered only through ``on_token`` and
    the call returns ``None`` once the final fragment was delivered. In
    one-shot mode the full text is returned. Failures raise; ``on_token`` is
    never called after a failure.
    """

    async def generate(
        self,
        system_instruction: str,
        input_text: str,
        on_token: TokenCallback | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        extra_user_prompt: str | None = None,
        streaming: bool = False,
    ) -> str | None:
        ...


def build_messages(
    system_instruction: str,
    input_text: str,
    extra_user_prompt: str | None = None,
) -> List[Dict[str, Any]]:
    messages: List[Dict[str, Any]] = [{"role": "system", "content": system_instruction}]
    if extra_user_prompt:
        messages.append({"role": "user", "content": extra_user_prompt})
    messages.append({"role": "user", "content": input_text})
    return messages


class OpenAICompatibleBackend:
    """Backend for any endpoint that speaks the OpenAI chat completions API."""

    def __init__(self, client: AIClient) -> None:
        self._client = client

    @property
    def client(self) -> AIClient:
        return self._client

    async def generate(
        self,
        system_instruction: str,
        input_text: str,
        on_token: TokenCallback | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        extra_user_prompt: str | None = None,
        streaming: bool = False,
    ) -> str | None:
        messages = build_messages(system_instruction, input_text, extra_user_prompt)
        sampling = DEFAULT_TEMPERATURE if temperature is None else temperature
        max_tokens = max_output_tokens if max_output_tokens and max_output_tokens > 0 else DEFAULT_MAX_OUTPUT_TOKENS

        if streaming and on_token is not None:
            async for fragment in self._client.stream_text(
                messages, temperature=sampling, max_tokens=max_tokens
            ):
                on_token(fragment)
            return None

        result = await self._client.complete_text(messages, temperature=sampling, max_tokens=max_tokens)
        if on_token is not None and result:
            on_token(result)
        return result

    async def aclose(self) -> None:
        await self._client.aclose()


_LOREM = (
    "Lorem ipsum dolor sit amet, consectetur adipiscing elit, sed do eiusmod tempor incididunt ut "
    "labore et dolore magna aliqua. Ut enim ad minim veniam, quis nostrud exercitation ullamco "
    "laboris nisi ut aliquip ex ea commodo consequat. Duis aute irure dolor in reprehenderit in "
    "voluptate velit esse cillum dolore eu fugiat nulla pariatur. Excepteur sint occaecat cupidatat "
    "non proident, sunt in culpa qui officia deserunt mollit anim id est laborum."
)


class DummyBackend:
    """Offline backend returning fixed text, used in testing mode."""

    def __init__(self, *, delay: float = 0.02, text: str = _LOREM) -> None:
        self._delay = max(0.0, delay)
        self._text = text

    def response_for(self, system_instruction: str, input_text: str, extra_user_prompt: str | None) -> str:
        if extra_user_prompt:
            return (
                f'Response to system: "{system_instruction}" and user prompt: "{extra_user_prompt}" '
                f'with content: "{input_text}" - {self._text}'
            )
        return self._text

    async def generate(
        self,
        system_instruction: str,
        input_text: str,
        on_token: TokenCallback | None = None,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        extra_user_prompt: str | None = None,
        streaming: bool = False,
    ) -> str | None:
        response = self.response_for(system_instruction, input_text, extra_user_prompt)
        if not streaming or on_token is None:
            if on_token is not None:
                on_token(response)
            return response
        for word in response.split(" "):
            on_token(word + " ")
            await asyncio.sleep(self._delay)
        return None


__all__ = [
    "DEFAULT_MAX_OUTPUT_TOKENS",
    "DEFAULT_TEMPERATURE",
    "DummyBackend",
    "ModelBackend",
    "OpenAICompatibleBackend",
    "TokenCallback",
    "build_messages",
]
