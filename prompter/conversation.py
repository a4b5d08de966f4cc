# prompter/conversation.py

import json
import logging
from typing import AsyncIterator, Callable, List, Optional

from prompter.base_utils import BaseUtils
from prompter.entities import Artifact, ConversationTurn, TurnRole
from prompter.errors import StreamError
from prompter.prompts import CHAT_SYSTEM_PROMPT, NO_CONTEXT_MARKER

logger = logging.getLogger("prompter_backend")

FAILURE_MARKER = "Logic trace failed."
DEFAULT_GREETING = "Assistant active. Need help refining structural logic?"


class ConversationSession(BaseUtils):
    """
    Multi-turn chat seeded with the active artifact.

    States: uninitialized (no remote session) and active. The remote session is
    created lazily on the first send, with a context seed that stays fixed for
    its lifetime. Binding an artifact with a different title resets to
    uninitialized and starts a fresh turn list; every reset bumps `generation`.

    Callers must not overlap sends. A stream failure never raises: it appends
    a terminal assistant turn carrying FAILURE_MARKER.
    """

    def __init__(
        self,
        chat_llm,
        artifact: Optional[Artifact] = None,
        on_update: Optional[Callable[[ConversationTurn], None]] = None,
    ):
        self.chat_llm = chat_llm
        self.on_update = on_update
        self.turns: List[ConversationTurn] = []
        self.last_error: Optional[StreamError] = None
        self._artifact = artifact
        self._session = None
        self._generation = 0

    @property
    def state(self) -> str:
        return "active" if self._session is not None else "uninitialized"

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def artifact(self) -> Optional[Artifact]:
        return self._artifact

    @property
    def greeting(self) -> str:
        if self._artifact is None:
            return DEFAULT_GREETING
        return f'I\'ve analyzed the "{self._artifact.title}" structure. Ready for refinements.'

    @property
    def context_seed(self) -> Optional[str]:
        """The seed of the live remote session, None while uninitialized."""
        return self._session.system_context if self._session is not None else None

    def build_context_seed(self, artifact: Optional[Artifact]) -> str:
        if artifact is None:
            context = NO_CONTEXT_MARKER
        else:
            context = json.dumps({"title": artifact.title, "prompt": artifact.prompt})
        return self.unsafe_string_format(CHAT_SYSTEM_PROMPT, context=context)

    def bind_artifact(self, artifact: Optional[Artifact]) -> None:
        old_title = self._artifact.title if self._artifact is not None else None
        new_title = artifact.title if artifact is not None else None
        self._artifact = artifact
        if new_title != old_title:
            self.reset()

    def reset(self) -> None:
        self._generation += 1
        self._session = None
        self.turns = []
        logger.debug(f"conversation reset -> generation {self._generation}")

    def _ensure_session(self):
        if self._session is None:
            self._session = self.chat_llm.create_session(self.build_context_seed(self._artifact))
        return self._session

    def _notify(self, turn: ConversationTurn, generation: int) -> None:
        if generation != self._generation:
            logger.debug(f"conversation: dropping update for stale generation {generation}")
            return
        if self.on_update is not None:
            self.on_update(turn)

    async def stream(self, text: str) -> AsyncIterator[str]:
        """
        Sends one user message and yields the reply fragments in arrival order,
        folding them into a single growing assistant turn. On failure the
        marker text is yielded as the terminal fragment.
        """
        text = (text or "").strip()
        if not text:
            raise ValueError("message text is empty")

        generation = self._generation
        turns = self.turns
        user_turn = ConversationTurn(role=TurnRole.USER, text=text)
        turns.append(user_turn)
        self._notify(user_turn, generation)

        reply: Optional[ConversationTurn] = None
        try:
            session = self._ensure_session()
            async for fragment in session.send_stream(text):
                if reply is None:
                    reply = ConversationTurn(role=TurnRole.ASSISTANT)
                    turns.append(reply)
                reply.text += fragment
                self._notify(reply, generation)
                yield fragment
        except Exception as e:
            self.last_error = StreamError(f"chat stream failed: {e}")
            self.color_print(self.last_error.message, color="red")
            failure = ConversationTurn(role=TurnRole.ASSISTANT, text=FAILURE_MARKER)
            turns.append(failure)
            self._notify(failure, generation)
            yield FAILURE_MARKER
            return

        if reply is None:
            reply = ConversationTurn(role=TurnRole.ASSISTANT, text="")
            turns.append(reply)
            self._notify(reply, generation)

    async def send(self, text: str) -> ConversationTurn:
        """Runs a whole exchange and returns its final assistant turn."""
        turns = self.turns
        async for _ in self.stream(text):
            pass
        return turns[-1]
