"""Two-phase chat: a fast answer now, a search-grounded answer when ready."""

import asyncio
import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set
from uuid import uuid4

from equity_insight.errors import AnalysisError, missing_credentials_error
from equity_insight.research import ResearchService
from equity_insight.sequencing import SequenceTracker


logger = logging.getLogger(__name__)

WELCOME_TEXT = (
    "Hello! I'm your EquityInsight assistant. Ask me about the data on screen, "
    "a stock, or the market in general."
)
LITE_ERROR_TEXT = "Sorry, I'm having trouble connecting right now."
THINKING_TEXT = "I'm thinking, a detailed answer is on its way..."
DETAILED_ERROR_TEXT = "Sorry, I encountered an error fetching detailed information."


@dataclass(frozen=True)
class ChatMessage:
    """
    One line of the transcript.

    is_lite marks a fast placeholder answer that a detailed answer may
    still replace. Messages are replaced whole, never edited.
    """
    role: str  # "user" or "ai"
    content: str
    is_lite: bool = False
    id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "isLite": self.is_lite,
            "timestamp": self.timestamp,
        }


class ChatSession:
    """
    Transcript plus the background upgrades still in flight.

    send() returns as soon as the lite answer is in; the detailed call runs
    as an independent task and swaps the message content when it resolves.
    If the fast call fails, a lite placeholder stands in until the detailed
    answer arrives. Upgrades are never cancelled by later messages, and a
    response only replaces a message if nothing newer was applied to it first.
    """

    def __init__(self, service: ResearchService, clock: Callable[[], float] = time.time) -> None:
        self._service = service
        self._clock = clock
        self._sequences = SequenceTracker()
        self._pending: Set[asyncio.Task] = set()
        self.messages: List[ChatMessage] = [self._message("ai", WELCOME_TEXT)]

    def _message(self, role: str, content: str, is_lite: bool = False) -> ChatMessage:
        return ChatMessage(role=role, content=content, is_lite=is_lite, timestamp=self._clock())

    @property
    def pending(self) -> int:
        return len(self._pending)

    def switch_view(self, view: str) -> ChatMessage:
        note = self._message("ai", f"I see you switched to the {view} view. I'm updated with the latest data here.")
        self.messages.append(note)
        return note

    async def send(self, text: str, context: Any = None) -> Optional[ChatMessage]:
        """
        Post a user message and return the fast answer.

        Args:
            text: The user's question; blank input is ignored
            context: Data of the current view (report, list, or string)

        Returns:
            The lite AI message, a placeholder if the fast call failed,
            the apology if no API key is configured, None for blank input
        """
        if not text or not text.strip():
            return None

        self.messages.append(self._message("user", text))

        try:
            answer = await self._service.chat_lite(text, context)
        except AnalysisError as e:
            logger.warning("Lite chat failed: %s", e.descriptor.title)
            if e.descriptor == missing_credentials_error():
                reply = self._message("ai", LITE_ERROR_TEXT)
                self.messages.append(reply)
                return reply
            answer = THINKING_TEXT

        reply = self._message("ai", answer, is_lite=True)
        self.messages.append(reply)
        self._sequences.accept(reply.id, self._sequences.issue())

        task = asyncio.create_task(self._upgrade(reply.id, self._sequences.issue(), text, context))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return reply

    async def _upgrade(self, message_id: str, sequence: int, text: str, context: Any) -> None:
        try:
            content = await self._service.chat_detailed(text, context)
        except AnalysisError as e:
            logger.warning("Detailed chat failed: %s", e.descriptor.title)
            content = DETAILED_ERROR_TEXT

        if not self._sequences.accept(message_id, sequence):
            logger.debug("Discarding stale detailed answer for message %s", message_id)
            return
        self._replace(message_id, content)

    def _replace(self, message_id: str, content: str) -> None:
        for i, message in enumerate(self.messages):
            if message.id == message_id:
                self.messages[i] = dataclasses.replace(message, content=content, is_lite=False)
                return

    async def wait_for_upgrades(self) -> None:
        """Wait until every scheduled detailed answer has been applied."""
        while self._pending:
            await asyncio.gather(*list(self._pending))
