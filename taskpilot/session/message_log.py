"""Message Log — ordered conversational turns with cross-channel reconciliation.

The same agent reply can reach the client twice: once on the request/response
(or streaming) channel and once on the push channel.  The two channels share
no identifier unless the server sends a ``messageId``, so reconciliation is:

- both copies carry a ``messageId`` → duplicate iff the ids match;
- otherwise → duplicate iff an existing agent entry has byte-identical content.

Pushed replies are checked against the whole log.  Replies on the
request/response channel are checked only against the current turn, so an
agent that legitimately answers two different questions with the same text
still gets two entries.  Whichever copy arrives second is dropped.
"""

from __future__ import annotations

import logging

from taskpilot.models.messages import Message, MessageRole

logger = logging.getLogger(__name__)


class MessageLog:
    """Append-only list of turns; the only removal is an exact rollback by id."""

    def __init__(self) -> None:
        self._messages: list[Message] = []

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self):
        return iter(self._messages)

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    @property
    def agent_messages(self) -> list[Message]:
        return [m for m in self._messages if m.role is MessageRole.AGENT]

    def append(self, message: Message) -> Message:
        self._messages.append(message)
        return message

    def append_agent(self, message: Message, *, turn: int | None = None) -> Message | None:
        """Append an agent reply unless another channel already delivered it.

        ``turn`` limits the duplicate scan to one turn; None scans the whole log.
        Returns the appended message, or None when it was dropped.
        """
        duplicate = self.find_duplicate(message, turn=turn)
        if duplicate is not None:
            logger.debug(
                "Dropping %s copy of agent reply already delivered via %s (id=%s)",
                message.source.value,
                duplicate.source.value,
                duplicate.id,
            )
            return None
        self._messages.append(message)
        return message

    def find_duplicate(self, message: Message, *, turn: int | None = None) -> Message | None:
        for existing in self._messages:
            if existing.role is not MessageRole.AGENT:
                continue
            if turn is not None and existing.turn != turn:
                continue
            if message.message_id and existing.message_id:
                if message.message_id == existing.message_id:
                    return existing
                continue
            if existing.content == message.content:
                return existing
        return None

    def remove(self, local_id: str) -> bool:
        """Remove exactly the entry with ``local_id``. Returns False if absent."""
        for index, existing in enumerate(self._messages):
            if existing.id == local_id:
                del self._messages[index]
                return True
        return False

    def clear(self) -> None:
        self._messages.clear()
