from __future__ import annotations

import asyncio
import json
from typing import Any

import aiohttp

from gork_v1.config import DEFAULT_BASE_URL, Settings
from gork_v1.prompts import RESPONSE_SCHEMA, RESPONSE_SCHEMA_NAME, VISION_PROMPT_TEMPLATE


class EmptyCompletionError(RuntimeError):
    """The model answered but the message had no usable content."""


class AIService:
    """Thin client for the OpenAI-compatible xAI endpoints.

    Every call is a single attempt. Transport and HTTP errors surface as
    ``RuntimeError`` so callers decide how to degrade.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def has_api_key(self) -> bool:
        return bool(self.settings.xai_api_key.strip())

    async def structured_completion(self, system_prompt: str, user_prompt: str) -> str:
        """Return the raw JSON text of a schema-constrained completion."""
        return await self._chat_completion(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            model=self.settings.chat_model,
            response_format={
                "type": "json_schema",
                "json_schema": {
                    "name": RESPONSE_SCHEMA_NAME,
                    "strict": True,
                    "schema": RESPONSE_SCHEMA,
                },
            },
        )

    async def describe_image(self, image_url: str, message_context: str) -> str:
        content: list[dict[str, Any]] = [
            {"type": "image_url", "image_url": {"url": image_url, "detail": "high"}},
            {"type": "text", "text": VISION_PROMPT_TEMPLATE.format(context=message_context)},
        ]
        return await self._chat_completion(
            [{"role": "user", "content": content}],
            model=self.settings.vision_model,
        )

    async def generate_image(self, prompt: str) -> str | None:
        data = await self._post_json(
            "images/generations",
            {
                "model": self.settings.image_model,
                "prompt": prompt,
                "n": 1,
                "response_format": "url",
            },
        )
        rows = data.get("data")
        if not isinstance(rows, list) or not rows:
            return None
        first = rows[0]
        url = str(first.get("url") or "").strip() if isinstance(first, dict) else ""
        return url or None

    async def download_image(self, url: str) -> bytes:
        timeout = aiohttp.ClientTimeout(total=self.settings.http_timeout_sec)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status >= 400:
                        raise RuntimeError(f"HTTP {response.status} while downloading image")
                    return await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RuntimeError(f"Image download failed: {exc}") from exc

    async def _chat_completion(
        self,
        messages: list[dict[str, Any]],
        *,
        model: str,
        response_format: dict[str, Any] | None = None,
    ) -> str:
        payload: dict[str, Any] = {"model": model, "messages": messages}
        if response_format is not None:
            payload["response_format"] = response_format
        data = await self._post_json("chat/completions", payload)
        choices = data.get("choices", [])
        if not choices:
            raise RuntimeError("No choices in response.")
        message = choices[0].get("message", {})
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
        if isinstance(content, list):
            parts: list[str] = []
            for item in content:
                if isinstance(item, dict):
                    text = str(item.get("text") or item.get("content") or "").strip()
                    if text:
                        parts.append(text)
            merged = "\n".join(parts).strip()
            if merged:
                return merged
        raise EmptyCompletionError("Model returned empty content.")

    async def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        api_key = self.settings.xai_api_key.strip()
        if not api_key:
            raise RuntimeError("xAI API key is not configured.")
        base = (self.settings.xai_base_url.strip() or DEFAULT_BASE_URL).rstrip("/")
        url = f"{base}/{path}"
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        timeout = aiohttp.ClientTimeout(total=self.settings.http_timeout_sec)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(url, headers=headers, json=payload) as response:
                    body = await response.text()
                    if response.status >= 400:
                        raise RuntimeError(f"HTTP {response.status}: {body[:300]}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise RuntimeError(f"Request to {path} failed: {exc}") from exc
        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"Invalid JSON from {path}: {body[:300]}") from exc
        if not isinstance(data, dict):
            raise RuntimeError(f"Unexpected payload from {path}.")
        return data
