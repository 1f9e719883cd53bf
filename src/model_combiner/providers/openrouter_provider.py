from __future__ import annotations

import httpx
import openai
from loguru import logger

from model_combiner.models import (
    CompletionFailure,
    CompletionParams,
    CompletionSuccess,
    Model,
    Outcome,
)
from model_combiner.providers.catalog import build_catalog, fallback_models
from model_combiner.providers.common import describe_error, openrouter_headers

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"


class OpenRouterGateway:
    """Chat completions and model listing against one OpenRouter-style API."""

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 60.0,
        app_title: str = "",
        referer: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._headers = openrouter_headers(app_title=app_title, referer=referer)
        self._transport = transport
        self._api_key: str | None = None
        self._client: openai.AsyncOpenAI | None = None

    @property
    def has_api_key(self) -> bool:
        return bool(self._api_key)

    def set_api_key(self, api_key: str | None) -> None:
        self._api_key = api_key or None
        if self._api_key is None:
            self._client = None
            return
        self._client = openai.AsyncOpenAI(
            api_key=self._api_key,
            base_url=self._base_url,
            timeout=self._timeout_seconds,
            max_retries=0,
            default_headers=self._headers,
        )

    async def complete_one(
        self,
        model_id: str,
        history: list[dict],
        params: CompletionParams,
    ) -> Outcome:
        if not model_id:
            raise ValueError("model_id is required")

        if self._client is None:
            return CompletionFailure(model_id=model_id, error_detail="No API key configured")

        logger.debug(
            f"Completion request: model={model_id}, messages={len(history)}, "
            f"max_tokens={params.max_tokens}, temperature={params.temperature}"
        )
        try:
            response = await self._client.chat.completions.create(
                model=model_id,
                messages=history,
                temperature=params.temperature,
                max_tokens=params.max_tokens,
                stream=False,
            )
        except (openai.OpenAIError, httpx.HTTPError) as ex:
            detail = describe_error(ex)
            logger.warning(f"Model {model_id} failed: {detail}")
            return CompletionFailure(model_id=model_id, error_detail=detail)

        choices = getattr(response, "choices", None) or []
        if not choices or getattr(choices[0], "message", None) is None:
            logger.warning(f"Model {model_id} returned a response without choices")
            return CompletionFailure(model_id=model_id, error_detail="Malformed response: no choices returned")

        choice = choices[0]
        content = choice.message.content or ""
        usage = response.usage.model_dump() if getattr(response, "usage", None) is not None else None
        logger.debug(f"Completion response: model={model_id}, len={len(content)}, finish_reason={choice.finish_reason}")
        return CompletionSuccess(
            model_id=model_id,
            content=content,
            usage=usage,
            finish_reason=choice.finish_reason or "stop",
        )

    async def list_models(self) -> list[Model]:
        if not self._api_key:
            logger.info("No API key set, using the fallback model catalog")
            return fallback_models()

        try:
            entries = await self._fetch_listing(self._api_key)
        except (httpx.HTTPError, ValueError) as ex:
            logger.error(f"Error fetching models: {describe_error(ex)}")
            return fallback_models()

        models = build_catalog(entries)
        if not models:
            logger.warning("Live model listing was empty, using the fallback catalog")
            return fallback_models()
        logger.debug(f"Fetched {len(models)} models")
        return models

    async def validate_credential(self, api_key: str) -> bool:
        if not api_key:
            return False
        try:
            await self._fetch_listing(api_key)
        except (httpx.HTTPError, ValueError) as ex:
            # Invalid keys and unreachable endpoints both land here.
            logger.warning(f"Credential validation failed: {describe_error(ex)}")
            return False
        return True

    async def _fetch_listing(self, api_key: str) -> list[dict]:
        headers = {
            **self._headers,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        }
        async with httpx.AsyncClient(timeout=self._timeout_seconds, transport=self._transport) as client:
            response = await client.get(f"{self._base_url}/models", headers=headers)

        if response.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"HTTP {response.status_code} from model listing",
                request=response.request,
                response=response,
            )

        data = response.json()
        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            raise ValueError("Malformed model listing: missing 'data' array")
        return entries
