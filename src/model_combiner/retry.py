from __future__ import annotations

from loguru import logger

from model_combiner.app_state import AppState
from model_combiner.dispatcher import resolve_outcome
from model_combiner.history import assemble_history
from model_combiner.models import CompletionParams, Pending
from model_combiner.provider import CompletionGateway


class RetryCoordinator:
    """Re-runs a single assistant message against its model."""

    def __init__(self, gateway: CompletionGateway, state: AppState):
        self._gateway = gateway
        self._state = state

    async def retry(self, message_id: str, params: CompletionParams | None = None) -> bool:
        conversation = self._state.conversation
        message = conversation.get(message_id)
        if message is None or message.model_id is None:
            logger.warning(f"Nothing to retry for message {message_id}")
            return False
        if params is None:
            params = self._state.preferences.completion_params()

        conversation.update_message(message_id, state=Pending())

        # History is read now, not from the round that produced the message.
        anchor = conversation.preceding_user_message(message_id)
        history = assemble_history(
            conversation.messages,
            through_message_id=anchor.id if anchor is not None else message_id,
        )

        logger.info(f"Retrying {message.model_id} for message {message_id}")
        outcome = await resolve_outcome(self._gateway, message.model_id, history, params)
        conversation.update_message(message_id, state=outcome.to_state())
        return True
