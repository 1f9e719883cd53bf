from __future__ import annotations

import textwrap

from model_combiner.models import ROLE_USER, STATUS_FAILED, STATUS_PENDING, Message, Model

_STATUS_MARKERS = {
    STATUS_PENDING: "...",
    STATUS_FAILED: "x",
}


class ConversationView:
    """Plain-text rendering of conversations, rounds and the model catalog."""

    def __init__(self, *, line_prefix: str = "", short_id_len: int = 8, show_model_info: bool = True):
        self._line_prefix = line_prefix
        self._short_id_len = short_id_len
        self.show_model_info = show_model_info

    def short_id(self, value: str) -> str:
        if len(value) <= self._short_id_len:
            return value
        return value[: self._short_id_len]

    def format_conversation_list_entry(self, conversation: dict, *, active_conversation_id: str | None) -> str:
        marker = "*" if conversation.get("id") == active_conversation_id else " "
        short_id = self.short_id(str(conversation.get("id", "")))
        models = ", ".join(conversation.get("selected_models") or []) or "-"
        return (
            f"{self._line_prefix}{marker} {conversation.get('title', short_id)} [{short_id}] "
            f"(messages={conversation.get('message_count', 0)}, "
            f"updated={conversation.get('last_updated_at', '')}, models={models})"
        )

    def format_model_entry(self, model: Model, *, selected: bool) -> str:
        marker = "*" if selected else " "
        tier = "free" if model.is_free else f"${model.prompt_price:g}/${model.completion_price:g}"
        return f"{self._line_prefix}{marker} {model.id} - {model.name} ({model.category}, {tier}, ctx={model.context_length:,})"

    def format_header(self, message: Message) -> str:
        if message.role == ROLE_USER:
            return f"you [{self.short_id(message.id)}]"
        marker = _STATUS_MARKERS.get(message.status or "", "")
        header = f"{message.model_id} [{self.short_id(message.id)}]"
        if marker:
            header += f" {marker}"
        if self.show_model_info and message.usage:
            total = message.usage.get("total_tokens")
            if total is not None:
                header += f" ({total} tokens)"
        return header

    def format_block(self, message: Message) -> list[str]:
        lines = [f"{self._line_prefix}== {self.format_header(message)}"]
        body = message.content if message.status != STATUS_PENDING else "(waiting for response)"
        lines.extend(f"{self._line_prefix}{line}" for line in body.splitlines() or [""])
        return lines

    def format_stacked(self, messages: list[Message]) -> list[str]:
        lines: list[str] = []
        for message in messages:
            lines.extend(self.format_block(message))
            lines.append("")
        return lines

    def format_side_by_side(self, messages: list[Message], *, width: int = 120, gutter: str = " | ") -> list[str]:
        if not messages:
            return []
        column_width = max(20, (width - len(gutter) * (len(messages) - 1)) // len(messages))
        columns: list[list[str]] = []
        for message in messages:
            column = [self.format_header(message)[:column_width], "-" * column_width]
            body = message.content if message.status != STATUS_PENDING else "(waiting for response)"
            for paragraph in body.splitlines() or [""]:
                column.extend(textwrap.wrap(paragraph, column_width) or [""])
            columns.append(column)

        height = max(len(c) for c in columns)
        lines: list[str] = []
        for row in range(height):
            cells = [(c[row] if row < len(c) else "").ljust(column_width) for c in columns]
            lines.append(self._line_prefix + gutter.join(cells).rstrip())
        return lines

    def format_round(self, messages: list[Message], *, view: str, width: int = 120) -> list[str]:
        """Render the last user prompt followed by its model responses."""
        last_user_index = max((i for i, m in enumerate(messages) if m.role == ROLE_USER), default=None)
        if last_user_index is None:
            return [f"{self._line_prefix}(no messages yet)"]
        prompt = messages[last_user_index]
        responses = messages[last_user_index + 1:]
        lines = self.format_block(prompt)
        lines.append("")
        if view == "side-by-side" and len(responses) > 1:
            lines.extend(self.format_side_by_side(responses, width=width))
        else:
            lines.extend(self.format_stacked(responses))
        return lines
