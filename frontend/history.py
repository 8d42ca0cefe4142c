from __future__ import annotations

from typing import Any, Dict, Iterator, List, Literal, Tuple

from pydantic import BaseModel, ConfigDict


Role = Literal["user", "model"]


class Message(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Role
    content: str


class Conversation:
    """Ordered, append-only history for one chat session.

    Lives only as long as the session that owns it. ``append_user`` is called
    by the input side; ``append_model`` is reserved for the transport, which
    appends exactly one reply per successful exchange.
    """

    def __init__(self) -> None:
        self._messages: List[Message] = []

    def append_user(self, text: str) -> Tuple[Message, ...]:
        if not text or not text.strip():
            return self.snapshot()
        self._messages.append(Message(role="user", content=text))
        return self.snapshot()

    def append_model(self, text: str) -> Tuple[Message, ...]:
        self._messages.append(Message(role="model", content=text))
        return self.snapshot()

    def snapshot(self) -> Tuple[Message, ...]:
        return tuple(self._messages)

    def to_payload(self) -> Dict[str, Any]:
        return {"messages": [message.model_dump() for message in self._messages]}

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self.snapshot())
