import asyncio
import json
import logging
import os
from typing import Any, Optional

import aiohttp

from comparison.models import HistoryMessage

from .models import ProviderFamily
from .registry import ProviderConfig

logger = logging.getLogger('modelmix.providers.clients')

EMPTY_RESPONSE_TEXT = "No response generated"


class ProviderCallError(Exception):
    """A provider call failed. ``error_code`` is machine readable, ``message`` is shown to users."""

    def __init__(self, message: str, error_code: str = "provider_error", status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status = status


def extract_error_message(payload: Any) -> Optional[str]:
    """Pull a vendor error message out of an error body, if it carries one."""
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    if isinstance(error, str) and error:
        return error
    if payload.get("message"):
        return str(payload["message"])
    return None


class ProviderClient:
    """Base class for vendor chat clients sharing one aiohttp session."""

    vendor_name = "Provider"

    def __init__(self, session: Optional[aiohttp.ClientSession] = None):
        self.session = session

    async def get_session(self) -> aiohttp.ClientSession:
        if not self.session or self.session.closed:
            self.session = aiohttp.ClientSession()
        return self.session

    async def _async_request(
        self,
        method: str,
        url: str,
        body: Any | None = None,
        headers: Optional[dict[str, str]] = None,
        params: Optional[dict[str, str]] = None,
    ) -> tuple[Any, int]:
        session = await self.get_session()
        try:
            async with session.request(method, url, json=body, headers=headers, params=params) as response:
                status = response.status
                raw = await response.text()
                try:
                    payload = json.loads(raw) if raw else {}
                except ValueError:
                    payload = {"message": raw[:500]}
                logger.debug(f"_async_request says: {method} {url} returned {status}")
                return payload, status
        except aiohttp.ClientError as e:
            logger.error(f"_async_request says: Error calling {self.vendor_name} at {url}: {e}")
            raise ProviderCallError(f"{self.vendor_name} API request failed: {e}", error_code="provider_unreachable")

    def _raise_for_status(self, payload: Any, status: int) -> None:
        if 200 <= status < 300:
            return
        message = extract_error_message(payload) or f"{self.vendor_name} API error: {status}"
        logger.warning(f"{self.vendor_name} returned status {status}: {message}")
        raise ProviderCallError(message, error_code="provider_http_error", status=status)

    async def generate(
        self,
        config: ProviderConfig,
        messages: list[HistoryMessage],
        images: list[str],
        api_key: str,
    ) -> str:
        """
        Send the conversation to the vendor and return the assistant text.

        Args:
            config: The provider slot being called
            messages: Prior history followed by the current user message
            images: Data URLs attached to the last user message
            api_key: The resolved key for this call

        Raises:
            ProviderCallError: On transport failures or non-2xx responses
        """
        raise NotImplementedError


class OpenAICompatibleClient(ProviderClient):
    """OpenAI chat-completions wire format, also spoken by DeepSeek and OpenRouter."""

    def __init__(self, vendor_name: str, session: Optional[aiohttp.ClientSession] = None, extra_headers: Optional[dict[str, str]] = None):
        super().__init__(session)
        self.vendor_name = vendor_name
        self.extra_headers = extra_headers or {}

    @staticmethod
    def format_messages(messages: list[HistoryMessage], images: list[str]) -> list[dict[str, Any]]:
        formatted = []
        last_index = len(messages) - 1
        for index, message in enumerate(messages):
            if message.role == "user" and index == last_index and images:
                content: Any = [{"type": "text", "text": message.content}]
                content.extend({"type": "image_url", "image_url": {"url": image}} for image in images)
                formatted.append({"role": message.role, "content": content})
            else:
                formatted.append({"role": message.role, "content": message.content})
        return formatted

    async def generate(self, config, messages, images, api_key):
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {api_key}",
            **self.extra_headers,
        }
        body = {
            "model": config.model_id,
            "messages": self.format_messages(messages, images if config.supports_images else []),
            "max_tokens": config.max_tokens,
            "temperature": config.temperature,
        }
        payload, status = await self._async_request("POST", config.endpoint, body, headers=headers)
        self._raise_for_status(payload, status)

        try:
            content = payload["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            content = None
        return content or EMPTY_RESPONSE_TEXT


class GeminiClient(ProviderClient):
    vendor_name = "Gemini"

    @staticmethod
    def format_contents(messages: list[HistoryMessage], images: list[str]) -> list[dict[str, Any]]:
        contents = []
        last_index = len(messages) - 1
        for index, message in enumerate(messages):
            parts: list[dict[str, Any]] = [{"text": message.content}]
            if message.role == "user" and index == last_index:
                for image in images:
                    # data:<mime>;base64,<data>
                    header, _, data = image.partition(",")
                    mime_type = header.split(";")[0].split(":")[-1] or "image/png"
                    parts.append({"inline_data": {"mime_type": mime_type, "data": data}})
            contents.append({"role": "model" if message.role == "assistant" else "user", "parts": parts})
        return contents

    async def generate(self, config, messages, images, api_key):
        url = config.endpoint.format(model=config.model_id)
        body = {
            "contents": self.format_contents(messages, images),
            "generationConfig": {
                "temperature": config.temperature,
                "maxOutputTokens": config.max_tokens,
            },
        }
        payload, status = await self._async_request(
            "POST", url, body, headers={"Content-Type": "application/json"}, params={"key": api_key}
        )
        self._raise_for_status(payload, status)

        try:
            content = payload["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            content = None
        return content or EMPTY_RESPONSE_TEXT


def create_provider_clients(session: Optional[aiohttp.ClientSession] = None) -> dict[ProviderFamily, ProviderClient]:
    """Build one client per chat provider family, all sharing ``session``."""
    openrouter_headers = {
        "HTTP-Referer": os.getenv("OPENROUTER_REFERER", "http://localhost:5173"),
        "X-Title": "ModelMix - AI Comparison Platform",
    }
    return {
        ProviderFamily.OPENAI: OpenAICompatibleClient("OpenAI", session),
        ProviderFamily.DEEPSEEK: OpenAICompatibleClient("DeepSeek", session),
        ProviderFamily.OPENROUTER: OpenAICompatibleClient("OpenRouter", session, extra_headers=openrouter_headers),
        ProviderFamily.GEMINI: GeminiClient(session),
    }


async def close_provider_clients(clients: dict[ProviderFamily, ProviderClient]) -> None:
    sessions = {id(c.session): c.session for c in clients.values() if c.session and not c.session.closed}
    await asyncio.gather(*(s.close() for s in sessions.values()))
