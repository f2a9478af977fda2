"""Turn assembly for completion requests."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List
from zoneinfo import ZoneInfo

from ..core.config import settings
from ..models import Message, MessageRole

_ROLE_MAP = {
    MessageRole.USER.value: "user",
    MessageRole.AI.value: "assistant",
}


def system_turn(now: datetime) -> Dict[str, str]:
    """Return the synthetic system turn carrying the current date and time."""

    date_string = f"{now:%A, %B} {now.day}, {now.year}"
    time_string = f"{now:%I:%M:%S %p}"
    return {
        "role": "system",
        "content": (
            f"Today is {date_string}, and the current time is {time_string}. "
            "Please use this real-time information if needed."
        ),
    }


def assemble_turns(messages: Iterable[Message], *, now: datetime | None = None) -> List[Dict[str, str]]:
    """Map stored messages onto completion turns behind a fresh system turn.

    ``messages`` must already be in chronological order and include the
    newest user message. Nothing is truncated.
    """

    if now is None:
        now = datetime.now(ZoneInfo(settings.CHAT_TIMEZONE))
    turns = [system_turn(now)]
    for message in messages:
        turns.append({"role": _ROLE_MAP[message.role], "content": message.content})
    return turns
