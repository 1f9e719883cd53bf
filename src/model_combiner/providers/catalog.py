from __future__ import annotations

import re

from model_combiner.models import Model

_FREE_KEYWORDS = (
    "free",
    ":free",
    "gemma",
    "llama-3.1-8b",
    "llama-3-8b",
    "mistral-7b",
    "qwen",
    "phi-3",
    "phi-3-mini",
    "mixtral-8x7b",
    "codestral-mamba",
    "deepseek-coder",
    "nous-hermes",
    "openchat",
    "toppy-m",
)

# Anything priced below this per token counts as the free tier.
_FREE_PRICE_CEILING = 0.000001

_CATEGORY_RULES: list[tuple[tuple[str, ...], str]] = [
    (("gpt", "openai"), "OpenAI"),
    (("claude", "anthropic"), "Anthropic"),
    (("gemini", "google"), "Google"),
    (("llama", "meta"), "Meta"),
    (("mistral",), "Mistral"),
    (("cohere",), "Cohere"),
    (("qwen", "alibaba"), "Alibaba"),
]


def parse_price(value: object) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def is_free_model(model_id: str, pricing: dict | None) -> bool:
    lowered = model_id.lower()
    if any(keyword in lowered for keyword in _FREE_KEYWORDS):
        return True
    pricing = pricing or {}
    prompt_price = parse_price(pricing.get("prompt"))
    completion_price = parse_price(pricing.get("completion"))
    return prompt_price < _FREE_PRICE_CEILING and completion_price < _FREE_PRICE_CEILING


def model_category(model_id: str) -> str:
    lowered = model_id.lower()
    for keywords, category in _CATEGORY_RULES:
        if any(k in lowered for k in keywords):
            return category
    return "Other"


def model_provider(model_id: str) -> str:
    return model_id.split("/")[0] or "Unknown"


def format_model_name(model_id: str) -> str:
    tail = model_id.split("/")[-1].replace("-", " ")
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), tail)


def model_from_listing(entry: dict) -> Model:
    """Map one entry of ``GET /models`` onto a Model."""
    model_id = str(entry.get("id") or "")
    pricing = entry.get("pricing") or {}
    return Model(
        id=model_id,
        name=str(entry.get("name") or format_model_name(model_id)),
        description=str(entry.get("description") or ""),
        context_length=int(entry.get("context_length") or 4096),
        is_free=is_free_model(model_id, pricing),
        prompt_price=parse_price(pricing.get("prompt")),
        completion_price=parse_price(pricing.get("completion")),
        category=model_category(model_id),
        provider=model_provider(model_id),
    )


def build_catalog(entries: list[dict]) -> list[Model]:
    """Filter and order a live listing: free first, then category, then name."""
    models = [model_from_listing(e) for e in entries if isinstance(e, dict)]
    models = [m for m in models if m.id and ":" not in m.id and m.name]
    models.sort(key=lambda m: (not m.is_free, m.category, m.name))
    return models


def filter_models(models: list[Model], tier: str | None) -> list[Model]:
    if tier == "free":
        return [m for m in models if m.is_free]
    if tier == "paid":
        return [m for m in models if not m.is_free]
    return list(models)


FALLBACK_MODELS: tuple[Model, ...] = (
    Model(
        id="meta-llama/llama-3.1-8b-instruct:free",
        name="Llama 3.1 8B (Free)",
        description="Meta's open-weights 8B instruct model, free tier",
        context_length=131072,
        is_free=True,
        category="Meta",
        provider="meta-llama",
    ),
    Model(
        id="microsoft/phi-3-mini-128k-instruct:free",
        name="Phi 3 Mini (Free)",
        description="Microsoft's small language model tuned for speed",
        context_length=128000,
        is_free=True,
        category="Microsoft",
        provider="microsoft",
    ),
    Model(
        id="google/gemma-2-9b-it:free",
        name="Gemma 2 9B (Free)",
        description="Google's Gemma 2 instruct model, free tier",
        context_length=8192,
        is_free=True,
        category="Google",
        provider="google",
    ),
    Model(
        id="mistralai/mistral-7b-instruct:free",
        name="Mistral 7B (Free)",
        description="Multilingual 7B model from Mistral AI, free tier",
        context_length=32768,
        is_free=True,
        category="Mistral",
        provider="mistralai",
    ),
    Model(
        id="huggingfaceh4/zephyr-7b-beta:free",
        name="Zephyr 7B Beta (Free)",
        description="Community fine-tune of Mistral 7B",
        context_length=32768,
        is_free=True,
        category="Hugging Face",
        provider="huggingfaceh4",
    ),
    Model(
        id="anthropic/claude-3.5-sonnet",
        name="Claude 3.5 Sonnet",
        description="Anthropic's strongest reasoning and coding model",
        context_length=200000,
        prompt_price=0.000003,
        completion_price=0.000015,
        category="Anthropic",
        provider="anthropic",
    ),
    Model(
        id="openai/gpt-4o",
        name="GPT-4o",
        description="OpenAI's flagship multimodal model",
        context_length=128000,
        prompt_price=0.0000025,
        completion_price=0.00001,
        category="OpenAI",
        provider="openai",
    ),
    Model(
        id="google/gemini-pro-1.5",
        name="Gemini Pro 1.5",
        description="Google's long-context reasoning model",
        context_length=1000000,
        prompt_price=0.00000125,
        completion_price=0.000005,
        category="Google",
        provider="google",
    ),
    Model(
        id="meta-llama/llama-3.1-405b-instruct",
        name="Llama 3.1 405B",
        description="Meta's largest open-weights model",
        context_length=131072,
        prompt_price=0.000005,
        completion_price=0.000015,
        category="Meta",
        provider="meta-llama",
    ),
    Model(
        id="mistralai/mistral-large",
        name="Mistral Large",
        description="Mistral's flagship model",
        context_length=128000,
        prompt_price=0.000004,
        completion_price=0.000012,
        category="Mistral",
        provider="mistralai",
    ),
    Model(
        id="anthropic/claude-3-haiku",
        name="Claude 3 Haiku",
        description="Fast, inexpensive Anthropic model for simple tasks",
        context_length=200000,
        prompt_price=0.00000025,
        completion_price=0.00000125,
        category="Anthropic",
        provider="anthropic",
    ),
)


def fallback_models() -> list[Model]:
    return list(FALLBACK_MODELS)
