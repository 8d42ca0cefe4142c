from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from frontend.history import Conversation
from frontend.markdown import render_markdown
from frontend.transport import Transport


logger = logging.getLogger("geminichat.frontend")

THINKING = "Thinking..."


def _timestamp() -> str:
    return datetime.now().strftime("%H:%M")


class MessageView(BaseModel):
    role: str
    text: str
    html: str
    timestamp: str = Field(default_factory=_timestamp)
    placeholder: bool = False
    error: bool = False

    @property
    def css_class(self) -> str:
        return "bot" if self.role == "model" else self.role

    def update(self, text: str, error: bool = False) -> None:
        self.text = text
        self.html = render_markdown(text, is_user=self.role == "user")
        self.placeholder = False
        self.error = error


def _view(role: str, text: str, placeholder: bool = False) -> MessageView:
    return MessageView(
        role=role,
        text=text,
        html=render_markdown(text, is_user=role == "user"),
        placeholder=placeholder,
    )


class ChatSession:
    """One chat window: its history, its transport and what it displays.

    Only one exchange may be in flight; ``submit`` is rejected while
    ``busy`` is set, the way the input box is disabled in the browser.
    """

    def __init__(self, transport: Transport, conversation: Optional[Conversation] = None) -> None:
        self.transport = transport
        self.conversation = conversation if conversation is not None else Conversation()
        self.views: List[MessageView] = []
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    async def submit(self, text: str) -> Optional[MessageView]:
        """Send ``text`` and return the view holding the reply, or None if rejected."""
        user_text = (text or "").strip()
        if not user_text:
            return None
        if self._busy:
            logger.debug("Submission rejected: an exchange is already in flight")
            return None

        self._busy = True
        try:
            self.conversation.append_user(user_text)
            self.views.append(_view("user", user_text))
            reply_view = _view("model", THINKING, placeholder=True)
            self.views.append(reply_view)

            turns_before = len(self.conversation)
            reply = await self.transport.send(self.conversation)
            reply_view.update(reply, error=len(self.conversation) == turns_before)
            return reply_view
        finally:
            self._busy = False
