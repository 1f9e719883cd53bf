from __future__ import annotations

import json
import shutil
from pathlib import Path

from model_combiner.app_state import LEVEL_ERROR, Notice
from model_combiner.commands.router import CommandRouter
from model_combiner.controller import AppController
from model_combiner.models import ROLE_ASSISTANT, STATUS_PENDING, Message, Preferences, coerce_preference
from model_combiner.providers.catalog import filter_models
from model_combiner.services.conversation_view import ConversationView

_LINE_PREFIX = "  "

_HELP_LINES = [
    "Type a prompt to send it to every selected model.",
    "/key <api-key> | /key clear     set or remove the OpenRouter API key",
    "/models [free|paid]             list available models (* = selected)",
    "/select <id>[,<id>...]          choose the models to compare",
    "/new                            start a new conversation",
    "/save                           save the current conversation",
    "/list                           list saved conversations",
    "/load <id-prefix>               open a saved conversation",
    "/delete <id-prefix>             delete a saved conversation",
    "/retry <message-id-prefix>      ask one model again",
    "/show                           show the last round",
    "/prefs [name=value ...]         show or change preferences",
    "/export <path> | /import <path> write or read all state as JSON",
    "/storage                        show storage usage",
    "/clear conversations|all        delete saved conversations or all stored data",
]


class CombinerShell:
    """Interactive front-end: turns REPL lines into controller operations."""

    def __init__(self, controller: AppController, *, width: int | None = None):
        self._controller = controller
        self._width = width or shutil.get_terminal_size((120, 40)).columns
        self._view = ConversationView(
            line_prefix=_LINE_PREFIX,
            show_model_info=controller.state.preferences.show_model_info,
        )
        self._router = CommandRouter(
            on_help=self._handle_help,
            on_key=self._handle_key,
            on_models=self._handle_models,
            on_select=self._handle_select,
            on_conversation=self._handle_conversation,
            on_retry=self._handle_retry,
            on_data=self._handle_data,
            on_prefs=self._handle_prefs,
            on_show=self._handle_show,
            on_unknown=self._handle_unknown,
        )
        controller.state.notifier.subscribe(self._print_notice)
        controller.state.conversation.subscribe(self._on_conversation_event)

    async def handle_line(self, line: str) -> None:
        if await self._router.try_handle(line):
            return
        round_ = await self._controller.submit(line)
        if round_ is not None and len(round_.placeholders) > 1:
            self._print_lines(
                [f"{_LINE_PREFIX}{sum(o.success for o in round_.outcomes)}/{len(round_.outcomes)} models answered"]
            )

    def print_banner(self) -> None:
        state = self._controller.state
        print("model-combiner (type 'exit' to quit, '/help' for commands)")
        print(f"API key: {'valid' if state.api_key_valid else 'missing or invalid'}")
        print(f"Models available: {len(state.available_models)}")
        print(f"Selected: {', '.join(state.selected_models) or '(none)'}")
        if state.conversation.title:
            print(f"Conversation: {state.conversation.title}")

    # -- handlers --

    async def _handle_help(self) -> None:
        self._print_lines([_LINE_PREFIX + line for line in _HELP_LINES])

    async def _handle_key(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        if len(parts) < 2:
            state = self._controller.state
            self._print_lines([f"{_LINE_PREFIX}API key: {'valid' if state.api_key_valid else 'missing or invalid'}"])
            return
        if parts[1].strip() == "clear":
            await self._controller.clear_api_key()
            self._print_lines([f"{_LINE_PREFIX}API key cleared"])
            return
        await self._controller.set_api_key(parts[1].strip())

    async def _handle_models(self, command: str) -> None:
        parts = command.split()
        tier = parts[1] if len(parts) > 1 else None
        state = self._controller.state
        if not state.available_models:
            await self._controller.load_models()
        selected = set(state.selected_models)
        models = filter_models(state.available_models, tier)
        self._print_lines([self._view.format_model_entry(m, selected=m.id in selected) for m in models])

    async def _handle_select(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        if len(parts) < 2:
            self._print_lines([f"{_LINE_PREFIX}Usage: /select <model-id>[,<model-id>...]"])
            return
        model_ids = [m.strip() for m in parts[1].replace(" ", ",").split(",") if m.strip()]
        known = {m.id for m in self._controller.state.available_models}
        unknown = [m for m in model_ids if known and m not in known]
        if unknown:
            self._print_lines([f"{_LINE_PREFIX}Not in the catalog (selected anyway): {', '.join(unknown)}"])
        self._controller.set_selected_models(model_ids)
        self._print_lines([f"{_LINE_PREFIX}Selected: {', '.join(self._controller.state.selected_models)}"])

    async def _handle_conversation(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        verb = parts[0]
        argument = parts[1].strip() if len(parts) > 1 else ""
        controller = self._controller

        if verb == "/new":
            controller.start_new_conversation()
            self._print_lines([f"{_LINE_PREFIX}Started a new conversation"])
            return
        if verb == "/save":
            saved = controller.save_current_conversation()
            if saved is None:
                self._print_lines([f"{_LINE_PREFIX}Nothing to save yet"])
            else:
                self._print_lines([f"{_LINE_PREFIX}Saved: {saved['title']} [{self._view.short_id(saved['id'])}]"])
            return
        if verb == "/list":
            conversations = controller.state.conversations
            if not conversations:
                self._print_lines([f"{_LINE_PREFIX}No saved conversations"])
                return
            active_id = controller.state.conversation.conversation_id
            self._print_lines([
                self._view.format_conversation_list_entry(c, active_conversation_id=active_id)
                for c in conversations
            ])
            return

        if not argument:
            self._print_lines([f"{_LINE_PREFIX}Usage: {verb} <conversation-id-prefix>"])
            return
        conversation_id = self._resolve_conversation_id(argument)
        if conversation_id is None:
            return
        if verb == "/load":
            if controller.load_conversation(conversation_id):
                self._print_lines([f"{_LINE_PREFIX}Loaded: {controller.state.conversation.title}"])
                await self._handle_show()
        elif verb == "/delete":
            if controller.delete_conversation(conversation_id):
                self._print_lines([f"{_LINE_PREFIX}Deleted conversation {self._view.short_id(conversation_id)}"])

    async def _handle_retry(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        if len(parts) < 2:
            self._print_lines([f"{_LINE_PREFIX}Usage: /retry <message-id-prefix>"])
            return
        message_id = self._controller.resolve_message_id(parts[1])
        if message_id is None:
            self._print_lines([f"{_LINE_PREFIX}No unique message matches {parts[1]!r}"])
            return
        await self._controller.retry(message_id)

    async def _handle_data(self, command: str) -> None:
        parts = command.split(maxsplit=1)
        verb = parts[0]
        if verb == "/storage":
            info = self._controller.storage_info()
            self._print_lines([f"{_LINE_PREFIX}{k}: {v}" for k, v in info.items()])
            return
        if verb == "/clear":
            await self._handle_clear(parts[1].strip() if len(parts) > 1 else "")
            return
        if len(parts) < 2:
            self._print_lines([f"{_LINE_PREFIX}Usage: {verb} <path>"])
            return

        path = Path(parts[1].strip()).expanduser()
        if verb == "/export":
            data = self._controller.export_data()
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text(json.dumps(data, indent=2), encoding="utf-8")
            except OSError as ex:
                self._controller.state.notifier.error(f"Cannot write {path}: {ex}")
                return
            self._print_lines([f"{_LINE_PREFIX}Exported {len(data['conversations'])} conversation(s) to {path}"])
            return

        try:
            document = path.read_text(encoding="utf-8")
        except OSError as ex:
            self._controller.state.notifier.error(f"Cannot read {path}: {ex}")
            return
        self._controller.import_data(document)

    async def _handle_clear(self, scope: str) -> None:
        if scope == "conversations":
            if self._controller.clear_all_conversations():
                self._print_lines([f"{_LINE_PREFIX}Deleted all saved conversations"])
        elif scope == "all":
            if self._controller.clear_all_data():
                self._print_lines([f"{_LINE_PREFIX}Deleted all stored data, including the API key"])
        else:
            self._print_lines([f"{_LINE_PREFIX}Usage: /clear conversations|all"])

    async def _handle_prefs(self, command: str) -> None:
        assignments = command.split()[1:]
        controller = self._controller
        if not assignments:
            prefs = controller.state.preferences.to_dict()
            self._print_lines([f"{_LINE_PREFIX}{k} = {v}" for k, v in prefs.items()])
            return

        current = controller.state.preferences.to_dict()
        updates: dict = {}
        for assignment in assignments:
            name, sep, raw = assignment.partition("=")
            if not sep or name not in current:
                controller.state.notifier.error(f"Unknown preference assignment: {assignment!r}")
                return
            try:
                updates[name] = coerce_preference(raw, current[name])
            except ValueError as ex:
                controller.state.notifier.error(f"Invalid value for {name}: {ex}")
                return
        controller.update_preferences(updates)
        self._view.show_model_info = controller.state.preferences.show_model_info
        self._print_lines([f"{_LINE_PREFIX}Updated: {', '.join(sorted(updates))}"])

    async def _handle_show(self) -> None:
        state = self._controller.state
        view = state.preferences.comparison_view or Preferences().comparison_view
        self._print_lines(self._view.format_round(state.conversation.messages, view=view, width=self._width))

    def _handle_unknown(self, command: str) -> None:
        self._print_lines([f"{_LINE_PREFIX}Unknown command: {command} (try /help)"])

    # -- helpers --

    def _resolve_conversation_id(self, prefix: str) -> str | None:
        matches = [c["id"] for c in self._controller.state.conversations if str(c.get("id", "")).startswith(prefix)]
        if len(matches) == 1:
            return matches[0]
        if not matches:
            self._controller.state.notifier.error(f"No conversation matches {prefix!r}")
        else:
            self._controller.state.notifier.error(f"Conversation prefix {prefix!r} is ambiguous")
        return None

    def _on_conversation_event(self, event: str, message: Message | None) -> None:
        if event != "updated" or message is None or message.role != ROLE_ASSISTANT:
            return
        if message.status == STATUS_PENDING:
            self._print_lines([f"{_LINE_PREFIX}(retrying {message.model_id}...)"])
            return
        self._print_lines(self._view.format_block(message) + [""])

    def _print_notice(self, notice: Notice) -> None:
        label = "error" if notice.level == LEVEL_ERROR else "ok"
        print(f"{_LINE_PREFIX}[{label}] {notice.message}")

    def _print_lines(self, lines: list[str]) -> None:
        for line in lines:
            print(line)
