from typing import Protocol, runtime_checkable

from model_combiner.models import CompletionParams, Model, Outcome


@runtime_checkable
class CompletionGateway(Protocol):
    def set_api_key(self, api_key: str | None) -> None:
        """Use ``api_key`` for every subsequent request (``None`` clears it)."""
        ...

    async def complete_one(
        self,
        model_id: str,
        history: list[dict],
        params: CompletionParams,
    ) -> Outcome:
        """Send one chat completion to one model.

        Backend failures come back as a ``CompletionFailure``; only caller
        mistakes (such as an empty model id) raise.
        """
        ...

    async def list_models(self) -> list[Model]:
        """Return the live catalog, or the fallback catalog when it is unavailable."""
        ...

    async def validate_credential(self, api_key: str) -> bool:
        ...


def create_gateway(
    gateway_name: str,
    *,
    base_url: str,
    timeout_seconds: float = 60.0,
    app_title: str = "",
    referer: str = "",
) -> CompletionGateway:
    """Factory: create a CompletionGateway by name."""
    name = gateway_name.strip().lower()
    if name == "openrouter":
        from model_combiner.providers.openrouter_provider import OpenRouterGateway
        return OpenRouterGateway(
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            app_title=app_title,
            referer=referer,
        )
    raise ValueError(f"Unknown gateway: {gateway_name!r}. Supported: 'openrouter'")
