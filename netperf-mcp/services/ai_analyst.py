# services/ai_analyst.py
import json
import logging
from typing import Any, Dict, Optional

import httpx

from services.models import Insight, InsightCategory

logger = logging.getLogger(__name__)

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"

# -----------------------------------------------
# AI annotation provider
# -----------------------------------------------
class RequestExplainer:
    """
    Asks an OpenAI chat model to explain one request and suggest an optimization.

    Best effort: without an API key, or on any HTTP/parse failure, the call
    resolves to None and the request simply stays unannotated.
    """

    provider_id = "openai-explainer"

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        endpoint: str = OPENAI_CHAT_URL,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.model = model
        self.endpoint = endpoint
        self.timeout = timeout
        self._client = client

    def build_prompt(self, payload: Dict[str, Any]) -> str:
        return f"""
    As a web performance expert, explain this network request and how to speed it up:

    {json.dumps(payload, indent=2)}

    Respond with a JSON object with the keys:
    "explanation" (one or two sentences),
    "category" (one of {", ".join(c.value for c in InsightCategory)}),
    "suggested_action" (one actionable sentence),
    "score" (0-1 severity).
    """

    async def __call__(self, payload: Dict[str, Any]) -> Optional[Insight]:
        if not self.api_key:
            logger.debug("OpenAI API key not configured; skipping explanation for %s", payload.get("id"))
            return None

        try:
            content = await self._complete(self.build_prompt(payload))
            return self._parse(content, payload)
        except (httpx.HTTPError, KeyError, IndexError, ValueError) as e:
            logger.warning("AI explanation failed for %s: %s", payload.get("id"), e)
            return None

    async def _complete(self, prompt: str) -> str:
        request_body = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": 400,
            "temperature": 0.3,
            "response_format": {"type": "json_object"},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        if self._client is not None:
            response = await self._client.post(
                self.endpoint, headers=headers, json=request_body, timeout=self.timeout,
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.endpoint, headers=headers, json=request_body, timeout=self.timeout,
                )
        response.raise_for_status()

        result = response.json()
        return result["choices"][0]["message"]["content"]

    def _parse(self, content: str, payload: Dict[str, Any]) -> Optional[Insight]:
        data = json.loads(content)
        message = data.get("explanation")
        if not message:
            return None

        try:
            category = InsightCategory(data.get("category"))
        except ValueError:
            category = InsightCategory.EXPLANATION

        score = data.get("score")
        return Insight(
            provider_id=self.provider_id,
            model=self.model,
            category=category,
            message=str(message),
            score=float(score) if isinstance(score, (int, float)) else None,
            suggested_action=data.get("suggested_action"),
            related_requests=(str(payload.get("id")),),
        )
