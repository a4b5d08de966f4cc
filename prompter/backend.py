# prompter/backend.py

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

from prompter.base_utils import BaseUtils
from prompter.conversation import ConversationSession
from prompter.entities import Artifact, ConversationTurn, SavedArtifact
from prompter.errors import ChatBusyError
from prompter.feed_poller import FeedPoller
from prompter.library_cache import LibraryCache
from prompter.model_props import load_settings
from prompter.schema_auditor import SchemaAuditor
from prompter.synthesizer import ArtifactSynthesizer

logger = logging.getLogger("prompter_backend")


class Backend(BaseUtils):
    """
    Owns one instance of every workbench component and the current artifact.

    A successful synthesis replaces the current artifact, records the query,
    resets the auditor's derived schema and rebinds the conversation. A failed
    synthesis leaves all of that untouched.
    """

    def __init__(self, settings: Optional[Dict[str, Any]] = None, llm=None, chat_llm=None):
        self.settings = settings if settings is not None else load_settings()
        self.llm_timeout = self.settings["llm_timeout"]
        self.llm_retries = self.settings["llm_retries"]

        if llm is None or chat_llm is None:
            default_llm, default_chat_llm = self._build_llms_for_model(self.settings["model"])
            llm = llm or default_llm
            chat_llm = chat_llm or default_chat_llm
        if llm is None or chat_llm is None:
            logger.warning(f"Backend: no LLM available for {self.settings['model']}; remote calls will fail.")
        self.llm = llm
        self.chat_llm = chat_llm

        self.artifact: Optional[Artifact] = None
        self.synthesizer = ArtifactSynthesizer(llm, max_sources=self.settings["max_sources"])
        self.auditor = SchemaAuditor(llm)
        self.conversation = ConversationSession(chat_llm)
        self.library = LibraryCache(history_limit=self.settings["search_history_limit"])
        self.pollers: Dict[str, FeedPoller] = {}
        self._chat_in_flight = False

    # -----------------------
    # Artifact
    # -----------------------

    def set_artifact(self, artifact: Optional[Artifact]) -> None:
        self.artifact = artifact
        self.auditor.bind_artifact(artifact)
        self.conversation.bind_artifact(artifact)

    async def synthesize(self, query: str) -> Artifact:
        query = (query or "").strip()
        if not query:
            raise ValueError("query is empty")
        artifact = await self.synthesizer.synthesize(query)
        self.set_artifact(artifact)
        self.library.record_search(query)
        self.color_print(f"synthesize: '{artifact.title}' with {len(artifact.sources)} source(s)", color="green")
        return artifact

    # -----------------------
    # Audit
    # -----------------------

    async def validate(self, schema: Optional[str] = None, example: Optional[str] = None) -> str:
        return await self.auditor.validate(schema, example)

    async def derive_schema(self, example: Optional[str] = None) -> str:
        return await self.auditor.derive_schema(example)

    async def run_prompt_test(self) -> str:
        return await self.auditor.run_prompt_test()

    # -----------------------
    # Chat
    # -----------------------

    @property
    def chat_busy(self) -> bool:
        return self._chat_in_flight

    def chat_stream(self, text: str) -> AsyncIterator[str]:
        """
        Claims the single chat slot and returns the reply stream. The slot is
        released once the stream is exhausted or closed; until then any other
        send raises ChatBusyError.
        """
        if not (text or "").strip():
            raise ValueError("message text is empty")
        self._claim_chat()
        return self._release_after(self.conversation.stream(text))

    async def chat(self, text: str) -> ConversationTurn:
        self._claim_chat()
        try:
            return await self.conversation.send(text)
        finally:
            self._chat_in_flight = False

    def _claim_chat(self) -> None:
        if self._chat_in_flight:
            raise ChatBusyError("a chat message is already in flight")
        self._chat_in_flight = True

    async def _release_after(self, stream: AsyncIterator[str]) -> AsyncIterator[str]:
        try:
            async for fragment in stream:
                yield fragment
        finally:
            self._chat_in_flight = False

    # -----------------------
    # Feeds
    # -----------------------

    async def start_feed(self, feed_id: str, symbol: str, wait: bool = False) -> FeedPoller:
        """
        Points the feed at `symbol`, creating its poller on first use.
        With wait=True the initial fetch is awaited and its failure raised.
        """
        poller = self.pollers.get(feed_id)
        if poller is None:
            poller = FeedPoller(
                self.llm,
                interval=self.settings["poll_interval_seconds"],
                history_points=self.settings["history_points"],
            )
        initial = poller.set_subject(symbol)
        self.pollers[feed_id] = poller
        if wait and initial is not None:
            await initial
            if poller.error is not None:
                raise poller.error
        return poller

    def feed(self, feed_id: str) -> Optional[FeedPoller]:
        return self.pollers.get(feed_id)

    async def stop_feed(self, feed_id: str) -> bool:
        poller = self.pollers.pop(feed_id, None)
        if poller is None:
            return False
        await poller.aclose()
        return True

    async def aclose(self) -> None:
        for feed_id in list(self.pollers):
            await self.stop_feed(feed_id)

    # -----------------------
    # Library
    # -----------------------

    def search_history(self) -> List[str]:
        return self.library.history()

    def toggle_favorite(self) -> Optional[SavedArtifact]:
        if self.artifact is None:
            raise ValueError("there is no current artifact to save")
        return self.library.toggle_favorite(self.artifact)

    def open_favorite(self, favorite_id: str) -> Optional[Artifact]:
        for saved in self.library.favorites():
            if saved.id == favorite_id:
                self.set_artifact(saved.artifact)
                return saved.artifact
        return None
