"""Conversation history replayed to the backend on every request."""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Tuple


class Role(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """One finalized, role-tagged message."""
    role: Role
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role.value, "content": self.content}


class ConversationHistory:
    """Ordered, append-only list of turns.

    Owned by the agent loop. Turns are only appended once their content is
    final, so the history never holds a half-streamed message.
    """

    def __init__(self):
        self._turns: List[Turn] = []

    def append(self, turn: Turn) -> Turn:
        self._turns.append(turn)
        return turn

    def append_user(self, content: str) -> Turn:
        return self.append(Turn(Role.USER, content))

    def append_assistant(self, content: str) -> Turn:
        return self.append(Turn(Role.ASSISTANT, content))

    @property
    def turns(self) -> Tuple[Turn, ...]:
        """Snapshot of the turns; callers cannot mutate the history through it."""
        return tuple(self._turns)

    @property
    def last(self) -> Turn:
        return self._turns[-1]

    def clear(self) -> None:
        self._turns.clear()

    def __iter__(self) -> Iterator[Turn]:
        return iter(tuple(self._turns))

    def __len__(self) -> int:
        return len(self._turns)
