from __future__ import annotations

from model_combiner.models import ROLE_ASSISTANT, ROLE_USER, Complete, Message


def is_history_message(message: Message) -> bool:
    if message.role == ROLE_USER:
        return True
    return (
        message.role == ROLE_ASSISTANT
        and isinstance(message.state, Complete)
        and bool(message.state.content)
    )


def assemble_history(messages: list[Message], *, through_message_id: str | None = None) -> list[dict]:
    """Build the chat payload sent to every model.

    Pending and failed assistant messages are dropped so an earlier error
    never reaches the next prompt. With ``through_message_id`` the walk stops
    after that message.
    """
    history: list[dict] = []
    for message in messages:
        if is_history_message(message):
            history.append({"role": message.role, "content": message.content})
        if through_message_id is not None and message.id == through_message_id:
            break
    return history
