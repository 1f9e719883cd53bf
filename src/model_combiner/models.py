from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field, fields
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"

STATUS_PENDING = "pending"
STATUS_COMPLETE = "complete"
STATUS_FAILED = "failed"


def utc_now() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds")


@dataclass(frozen=True)
class Pending:
    status = STATUS_PENDING


@dataclass(frozen=True)
class Complete:
    content: str
    usage: dict | None = None
    finish_reason: str = "stop"
    status = STATUS_COMPLETE


@dataclass(frozen=True)
class Failed:
    error_detail: str
    status = STATUS_FAILED


ResponseState = Pending | Complete | Failed


@dataclass(frozen=True)
class Message:
    """One entry of a conversation.

    User messages carry ``text`` only. Assistant messages carry the model that
    produces them and exactly one response state.
    """

    id: str
    role: str
    created_at: str
    text: str = ""
    model_id: str | None = None
    state: ResponseState | None = None

    def __post_init__(self) -> None:
        if self.role == ROLE_USER:
            if self.model_id is not None or self.state is not None:
                raise ValueError("User messages cannot carry a model or a response state")
        elif self.role == ROLE_ASSISTANT:
            if not self.model_id:
                raise ValueError("Assistant messages require a model_id")
            if self.state is None:
                raise ValueError("Assistant messages require a response state")
        else:
            raise ValueError(f"Unknown message role: {self.role!r}")

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(id=str(uuid4()), role=ROLE_USER, created_at=utc_now(), text=text)

    @classmethod
    def placeholder(cls, model_id: str) -> Message:
        return cls(
            id=str(uuid4()),
            role=ROLE_ASSISTANT,
            created_at=utc_now(),
            model_id=model_id,
            state=Pending(),
        )

    @property
    def status(self) -> str | None:
        return self.state.status if self.state is not None else None

    @property
    def content(self) -> str:
        if self.state is None:
            return self.text
        if isinstance(self.state, Complete):
            return self.state.content
        if isinstance(self.state, Failed):
            return f"Error: {self.state.error_detail}"
        return ""

    @property
    def usage(self) -> dict | None:
        return self.state.usage if isinstance(self.state, Complete) else None

    @property
    def error_detail(self) -> str | None:
        return self.state.error_detail if isinstance(self.state, Failed) else None

    def to_dict(self) -> dict:
        data: dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "created_at": self.created_at,
        }
        if self.role == ROLE_ASSISTANT:
            data["model_id"] = self.model_id
            data["status"] = self.status
            if isinstance(self.state, Complete):
                data["usage"] = self.state.usage
                data["finish_reason"] = self.state.finish_reason
            elif isinstance(self.state, Failed):
                data["error_detail"] = self.state.error_detail
        return data

    @classmethod
    def from_dict(cls, data: dict) -> Message:
        role = data.get("role")
        if role == ROLE_USER:
            return cls(
                id=str(data["id"]),
                role=ROLE_USER,
                created_at=str(data.get("created_at") or utc_now()),
                text=str(data.get("content", "")),
            )

        status = data.get("status")
        state: ResponseState
        if status == STATUS_COMPLETE:
            state = Complete(
                content=str(data.get("content", "")),
                usage=data.get("usage"),
                finish_reason=str(data.get("finish_reason") or "stop"),
            )
        elif status == STATUS_FAILED:
            state = Failed(error_detail=str(data.get("error_detail") or "Unknown error"))
        elif status == STATUS_PENDING:
            # A saved placeholder never resolved (the process exited mid-round).
            state = Failed(error_detail="Response was interrupted before it completed")
        else:
            raise ValueError(f"Unknown message status: {status!r}")
        return cls(
            id=str(data["id"]),
            role=str(role),
            created_at=str(data.get("created_at") or utc_now()),
            model_id=data.get("model_id"),
            state=state,
        )


@dataclass(frozen=True)
class CompletionParams:
    temperature: float = 0.7
    max_tokens: int = 1000


@dataclass(frozen=True)
class CompletionSuccess:
    model_id: str
    content: str
    usage: dict | None = None
    finish_reason: str = "stop"

    @property
    def success(self) -> bool:
        return True

    def to_state(self) -> Complete:
        return Complete(content=self.content, usage=self.usage, finish_reason=self.finish_reason)


@dataclass(frozen=True)
class CompletionFailure:
    model_id: str
    error_detail: str

    @property
    def success(self) -> bool:
        return False

    def to_state(self) -> Failed:
        return Failed(error_detail=self.error_detail)


Outcome = CompletionSuccess | CompletionFailure


@dataclass(frozen=True)
class Model:
    id: str
    name: str
    description: str = ""
    context_length: int = 4096
    is_free: bool = False
    prompt_price: float = 0.0
    completion_price: float = 0.0
    category: str = "Other"
    provider: str = "Unknown"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Model:
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


_TRUE_WORDS = {"1", "true", "yes", "on"}
_FALSE_WORDS = {"0", "false", "no", "off"}


def coerce_preference(value: object, default: object) -> object:
    """Convert ``value`` to the type of ``default`` or raise ``ValueError``.

    Strings are parsed (so CLI input and JSON both work); any other type
    mismatch is rejected.
    """
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_WORDS:
                return True
            if lowered in _FALSE_WORDS:
                return False
        raise ValueError(f"expected a boolean, got {value!r}")
    if isinstance(default, int):
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError(f"expected an integer, got {value!r}")
        number = int(value)
        if number < 1:
            raise ValueError(f"expected a positive integer, got {value!r}")
        return number
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"expected a number, got {value!r}")
        number = float(value)
        if not math.isfinite(number):
            raise ValueError(f"expected a finite number, got {value!r}")
        return number
    if not isinstance(value, str):
        raise ValueError(f"expected a string, got {value!r}")
    return value


@dataclass
class Preferences:
    theme: str = "light"
    default_temperature: float = 0.7
    default_max_tokens: int = 1000
    auto_save: bool = True
    show_model_info: bool = True
    comparison_view: str = "side-by-side"

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Preferences:
        """Build preferences from stored or imported values.

        Unknown keys are ignored; a value of the wrong type raises ``ValueError``.
        """
        defaults = asdict(cls())
        values = {}
        for name, value in data.items():
            if name not in defaults:
                continue
            try:
                values[name] = coerce_preference(value, defaults[name])
            except ValueError as ex:
                raise ValueError(f"Invalid preference {name}: {ex}") from ex
        return cls(**values)

    def completion_params(self) -> CompletionParams:
        return CompletionParams(
            temperature=float(self.default_temperature),
            max_tokens=int(self.default_max_tokens),
        )


@dataclass
class DispatchRound:
    user_message: Message
    placeholders: list[Message]
    outcomes: list[Outcome] = field(default_factory=list)
