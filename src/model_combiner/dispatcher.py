from __future__ import annotations

import asyncio
from collections.abc import Callable

from loguru import logger

from model_combiner.app_state import AppState
from model_combiner.history import assemble_history
from model_combiner.models import (
    CompletionFailure,
    CompletionParams,
    DispatchRound,
    Message,
    Outcome,
)
from model_combiner.provider import CompletionGateway

REASON_INVALID_CREDENTIAL = "invalid_credential"
REASON_NO_MODELS = "no_models"
REASON_EMPTY_PROMPT = "empty_prompt"
REASON_ROUND_IN_PROGRESS = "round_in_progress"


class DispatchRejected(ValueError):
    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason


async def resolve_outcome(
    gateway: CompletionGateway,
    model_id: str,
    history: list[dict],
    params: CompletionParams,
) -> Outcome:
    """Call the gateway and fold anything it raises into a failure outcome."""
    try:
        return await gateway.complete_one(model_id, history, params)
    except Exception as ex:
        logger.error(f"Unexpected error from model {model_id}: {ex}")
        return CompletionFailure(model_id=model_id, error_detail=str(ex) or type(ex).__name__)


class FanOutDispatcher:
    """Sends one prompt to every selected model at once.

    Placeholders are appended before the first await, so observers see the
    full round immediately. Each request writes back only to its own
    placeholder, keyed by message id.
    """

    def __init__(
        self,
        gateway: CompletionGateway,
        state: AppState,
        *,
        on_persist: Callable[[], None] | None = None,
    ):
        self._gateway = gateway
        self._state = state
        self._on_persist = on_persist

    async def dispatch(
        self,
        prompt_text: str,
        selected_model_ids: list[str] | None = None,
        params: CompletionParams | None = None,
    ) -> DispatchRound:
        model_ids = list(self._state.selected_models if selected_model_ids is None else selected_model_ids)
        prompt = prompt_text.strip()
        self._check_preconditions(prompt, model_ids)
        if params is None:
            params = self._state.preferences.completion_params()

        conversation = self._state.conversation
        epoch = conversation.epoch

        user_message = Message.user(prompt)
        conversation.append_message(user_message)
        placeholders = [Message.placeholder(model_id) for model_id in model_ids]
        for placeholder in placeholders:
            conversation.append_message(placeholder)

        history = assemble_history(conversation.messages, through_message_id=user_message.id)
        logger.info(f"Dispatching to {len(model_ids)} model(s): {', '.join(model_ids)}")

        # Keep the prompt even if the process dies mid-round.
        self._persist("round started")
        saved_under = conversation.conversation_id

        self._state.is_generating = True
        try:
            outcomes = await asyncio.gather(
                *(self._settle(p, history, params) for p in placeholders)
            )
        finally:
            self._state.is_generating = False

        failures = sum(1 for o in outcomes if not o.success)
        logger.info(f"Round settled: {len(outcomes) - failures} succeeded, {failures} failed")

        if self._still_active(saved_under, epoch):
            self._persist("round settled")
        else:
            logger.debug("Conversation changed during the round, skipping the settle save")

        return DispatchRound(user_message=user_message, placeholders=placeholders, outcomes=list(outcomes))

    def _still_active(self, saved_under: str | None, epoch: int) -> bool:
        """Whether the conversation this round belongs to is the active one.

        Once saved, the round is tied to its conversation id, so reopening the
        same conversation mid-round still receives the settle save.
        """
        conversation = self._state.conversation
        if saved_under is not None:
            return conversation.conversation_id == saved_under
        return conversation.epoch == epoch

    def _check_preconditions(self, prompt: str, model_ids: list[str]) -> None:
        if self._state.is_generating:
            raise DispatchRejected(REASON_ROUND_IN_PROGRESS, "Responses are still being generated")
        if not self._state.api_key_valid:
            raise DispatchRejected(REASON_INVALID_CREDENTIAL, "Please enter a valid API key first")
        if not model_ids:
            raise DispatchRejected(REASON_NO_MODELS, "Please select at least one model")
        if not prompt:
            raise DispatchRejected(REASON_EMPTY_PROMPT, "Please enter a message")

    async def _settle(self, placeholder: Message, history: list[dict], params: CompletionParams) -> Outcome:
        outcome = await resolve_outcome(self._gateway, placeholder.model_id, history, params)
        self._state.conversation.update_message(placeholder.id, state=outcome.to_state())
        return outcome

    def _persist(self, stage: str) -> None:
        if self._on_persist is None:
            return
        try:
            self._on_persist()
        except Exception as ex:
            logger.error(f"Saving conversation failed ({stage}): {ex}")
            self._state.notifier.error(f"Failed to save conversation: {ex}")
