"""
OpenAI-compatible chat completion client
"""

import json
import logging
import re
import time
from typing import Any, Dict, List, Optional

import httpx

from concept_tournament.core.config import settings
from concept_tournament.core.errors import ProviderError

logger = logging.getLogger(__name__)

API_TYPE_OPENAI = "OPENAI"          # OpenAI-compatible API
API_TYPE_OPENWEBUI = "OPENWEBUI"    # OpenWebUI API

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def parse_json_object(content: str) -> Dict[str, Any]:
    """Parse a model reply that should be a single JSON object"""
    text = _FENCE.sub("", content.strip())
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        # Some models wrap the object in prose
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ProviderError("model reply is not JSON")
        try:
            data = json.loads(text[start:end + 1])
        except json.JSONDecodeError as e:
            raise ProviderError(f"model reply is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise ProviderError("model reply is not a JSON object")
    return data


class LLMClient:
    """Chat completions over httpx"""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_type: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        verify_ssl: Optional[bool] = None,
        max_tokens: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.LLM_BASE_URL
        self.api_type = (api_type or settings.LLM_API_TYPE).upper()
        self.model = model or settings.LLM_MODEL
        self.api_key = api_key if api_key is not None else settings.LLM_API_KEY
        self.timeout = timeout or settings.LLM_TIMEOUT
        self.verify_ssl = settings.LLM_VERIFY_SSL if verify_ssl is None else verify_ssl
        self.max_tokens = max_tokens or settings.LLM_MAX_TOKENS
        self.transport = transport

    def _build_complete_api_url(self) -> str:
        """Full chat completions endpoint for the configured API type"""
        base_url = self.base_url.rstrip('/')

        if self.api_type == API_TYPE_OPENAI:
            # OpenAI: /v1/chat/completions
            if base_url.endswith('/v1/chat/completions'):
                return base_url
            elif base_url.endswith('/v1'):
                return f"{base_url}/chat/completions"
            else:
                return f"{base_url}/v1/chat/completions"
        else:
            # OpenWebUI: /api/chat/completions
            if base_url.endswith('/api/chat/completions'):
                return base_url
            elif base_url.endswith('/api'):
                return f"{base_url}/chat/completions"
            else:
                return f"{base_url}/api/chat/completions"

    def _build_request_body(self, messages: List[dict], temperature: float, json_mode: bool) -> dict:
        body = {
            "model": self.model,
            "messages": messages,
            "stream": False,
            "max_tokens": self.max_tokens,
            "temperature": temperature
        }
        if json_mode and self.api_type == API_TYPE_OPENAI:
            body["response_format"] = {"type": "json_object"}
        return body

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key is not None and self.api_key.strip():
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def chat(self, system_prompt: str, user_prompt: str, temperature: float = 0.7, json_mode: bool = False) -> str:
        """Single non-streaming completion; returns the reply text"""
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt}
        ]
        endpoint = self._build_complete_api_url()
        body = self._build_request_body(messages, temperature, json_mode)
        start_time = time.time()

        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify_ssl, transport=self.transport) as client:
                response = await client.post(endpoint, json=body, headers=self._headers())
                response.raise_for_status()
                result = response.json()
        except httpx.TimeoutException:
            raise ProviderError(f"LLM request timed out after {self.timeout}s")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            # Rate limits and server errors are worth another attempt
            retryable = status == 429 or status >= 500
            raise ProviderError(f"LLM returned HTTP {status}: {e.response.text[:200]}", retryable=retryable)
        except httpx.HTTPError as e:
            raise ProviderError(f"LLM request failed: {e}")
        except ValueError as e:
            raise ProviderError(f"LLM response is not JSON: {e}")

        logger.debug(f"LLM {self.model} replied in {time.time() - start_time:.1f}s")

        choices = result.get("choices") or []
        if not choices:
            raise ProviderError("LLM response has no choices")
        content = (choices[0].get("message") or {}).get("content") or ""
        if not content.strip():
            raise ProviderError("LLM response is empty")
        return content

    async def chat_json(self, system_prompt: str, user_prompt: str, temperature: float = 0.7) -> Dict[str, Any]:
        content = await self.chat(system_prompt, user_prompt, temperature=temperature, json_mode=True)
        return parse_json_object(content)
