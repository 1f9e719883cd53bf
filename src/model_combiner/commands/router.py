from __future__ import annotations

from collections.abc import Awaitable, Callable

CommandHandler = Callable[[str], Awaitable[None]]


class CommandRouter:
    def __init__(
        self,
        *,
        on_help: Callable[[], Awaitable[None]],
        on_key: CommandHandler,
        on_models: CommandHandler,
        on_select: CommandHandler,
        on_conversation: CommandHandler,
        on_retry: CommandHandler,
        on_data: CommandHandler,
        on_prefs: CommandHandler,
        on_show: Callable[[], Awaitable[None]],
        on_unknown: Callable[[str], None],
    ) -> None:
        self._on_help = on_help
        self._on_show = on_show
        self._on_unknown = on_unknown
        self._prefixed: list[tuple[tuple[str, ...], CommandHandler]] = [
            (("/key",), on_key),
            (("/models",), on_models),
            (("/select",), on_select),
            (("/new", "/save", "/list", "/load", "/delete"), on_conversation),
            (("/retry",), on_retry),
            (("/export", "/import", "/storage", "/clear"), on_data),
            (("/prefs",), on_prefs),
        ]

    async def try_handle(self, user_message: str) -> bool:
        trimmed = user_message.strip()
        if not trimmed.startswith("/"):
            return False

        command = trimmed.split(maxsplit=1)[0]
        if command == "/help":
            await self._on_help()
            return True
        if command == "/show":
            await self._on_show()
            return True
        for names, handler in self._prefixed:
            if command in names:
                await handler(trimmed)
                return True

        self._on_unknown(trimmed)
        return True
