import asyncio
import logging
import threading
import random
import time
import traceback
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, TypeVar

from openai import AsyncOpenAI
from langchain_google_vertexai import ChatVertexAI
from langchain_core.messages import BaseMessage, HumanMessage, AIMessage, SystemMessage
from langchain_community.chat_message_histories.in_memory import ChatMessageHistory

from prompter.entities import Citation, GenerationResult
from prompter.google_helpers import PROJECT_ID, REGION, build_creds
from prompter.model_props import parse_model_name, is_openai_model

T = TypeVar("T")

logger = logging.getLogger("prompter_backend")

GOOGLE_SEARCH_TOOL = {"google_search": {}}
OPENAI_WEB_SEARCH_TOOL = {"type": "web_search"}


class MaxRetryErrorsException(Exception):
    pass


# Global backoff state (shared across all clients)
_global_backoff_lock = threading.Lock()
_global_wait_until = 0.0
_global_backoff_seconds = 30.0
_GLOBAL_BACKOFF_MAX = 600.0


def is_timeout_error(e: BaseException) -> bool:
    if isinstance(e, asyncio.TimeoutError):
        return True
    msg = repr(e)
    return "TimeoutError" in msg or "timed out" in msg.lower()


def is_resource_exhausted_error(e: BaseException) -> bool:
    msg = str(e)
    return (
        "429" in msg
        and (
            "RESOURCE_EXHAUSTED" in msg
            or "Resource has been exhausted" in msg
            or "Too Many Requests" in msg
        )
    )


def root_cause(e: BaseException) -> BaseException:
    """Unwrap MaxRetryErrorsException to the error of the last attempt."""
    if isinstance(e, MaxRetryErrorsException) and e.__cause__ is not None:
        return e.__cause__
    return e


async def call_with_retries(
    fn: Callable[[], Awaitable[T]],
    *,
    retries: int = 1,
    log: Callable[[str], None] | None = None,
) -> T:
    """
    Run an async LLM call with global 429/timeout backoff + retries.
    retries=1 means a single attempt; a 429 still widens the shared backoff window.
    """
    last_exception: Exception | None = None

    async def _respect_global_backoff() -> None:
        while True:
            with _global_backoff_lock:
                now = time.monotonic()
                wait = _global_wait_until - now
            if wait <= 0:
                return
            await asyncio.sleep(min(wait, 1.0))

    def _register_429_and_get_delay() -> float:
        global _global_wait_until, _global_backoff_seconds

        with _global_backoff_lock:
            now = time.monotonic()
            base = _global_backoff_seconds
            delay = random.uniform(base * 0.95, base * 1.35)
            _global_backoff_seconds = min(_global_backoff_seconds * 2, _GLOBAL_BACKOFF_MAX)
            _global_wait_until = max(_global_wait_until, now + delay)
            return delay

    def _reset_backoff_on_success() -> None:
        global _global_backoff_seconds
        _global_backoff_seconds = max(1.0, _global_backoff_seconds * 0.5)

    for attempt in range(retries):
        await _respect_global_backoff()
        start_time = time.time()
        try:
            result = await fn()
            _reset_backoff_on_success()
            return result
        except Exception as e:
            elapsed = time.time() - start_time
            last_exception = e

            if is_resource_exhausted_error(e) or is_timeout_error(e):
                delay = _register_429_and_get_delay()
                msg = f"Attempt {attempt+1} got 429/timeout, backing off ~{delay:.1f}s."
            else:
                msg = f"Attempt {attempt+1} failed."

            if log:
                log(f"{msg} (elapsed={elapsed:.2f}s): {e}\n{traceback.format_exc()}")

    raise MaxRetryErrorsException(f"All {retries} retry attempts failed.") from last_exception


def _content_to_text(content: Any) -> str:
    """LangChain message content is either a string or a list of typed parts."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        out = []
        for part in content:
            if isinstance(part, str):
                out.append(part)
            elif isinstance(part, dict) and part.get("type", "text") == "text":
                out.append(str(part.get("text") or ""))
        return "".join(out)
    return str(content)


def _to_vertex_schema(schema: Any) -> Any:
    """Vertex response schemas reject `additionalProperties`; OpenAI strict mode requires it."""
    if isinstance(schema, dict):
        return {k: _to_vertex_schema(v) for k, v in schema.items() if k != "additionalProperties"}
    if isinstance(schema, list):
        return [_to_vertex_schema(v) for v in schema]
    return schema


def _vertex_citations(resp: Any) -> List[Citation]:
    metadata = getattr(resp, "response_metadata", None) or {}
    grounding = metadata.get("grounding_metadata") if isinstance(metadata, dict) else None
    chunks = (grounding or {}).get("grounding_chunks") or []
    citations: List[Citation] = []
    for chunk in chunks:
        web = (chunk or {}).get("web") or {}
        citations.append(
            Citation(
                title=web.get("title") or "Grounded Reference",
                uri=web.get("uri") or "#",
            )
        )
    return citations


def _openai_citations(resp: Any) -> List[Citation]:
    citations: List[Citation] = []
    for item in getattr(resp, "output", None) or []:
        if getattr(item, "type", None) != "message":
            continue
        for part in getattr(item, "content", None) or []:
            for ann in getattr(part, "annotations", None) or []:
                if getattr(ann, "type", None) != "url_citation":
                    continue
                citations.append(
                    Citation(
                        title=getattr(ann, "title", None) or "Grounded Reference",
                        uri=getattr(ann, "url", None) or "#",
                    )
                )
    return citations


class BaseLlmClient:
    """
    Provider selection plus token usage accounting shared by both clients.
    Provider SDK objects are built lazily so a missing credential surfaces
    as a failure of the call that needed it.
    """

    last_usage: Optional[Dict[str, int]]

    def __init__(
        self,
        model_name: str,
        *,
        vertex_project: str = PROJECT_ID,
        vertex_region: str = REGION,
        timeout: float | None = None,
        retries: int = 1,
    ):
        self.provider = "openai" if is_openai_model(model_name) else "vertex"
        self.model_name = model_name
        self.vertex_project = vertex_project
        self.vertex_region = vertex_region
        self._timeout = timeout
        self.retries = retries
        self.last_usage: Optional[Dict[str, int]] = None
        self._openai_params: Dict[str, Any] = {}
        self._client: AsyncOpenAI | None = None

        if self.provider == "openai":
            self.model_name, self._openai_params = parse_model_name(self.model_name)

    def _openai(self) -> AsyncOpenAI:
        if self._client is None:
            client_kwargs: Dict[str, Any] = {"max_retries": 0}
            if self._timeout is not None:
                client_kwargs["timeout"] = self._timeout
            self._client = AsyncOpenAI(**client_kwargs)
        return self._client

    def _build_vertex(self, **config: Any) -> ChatVertexAI:
        kwargs = {k: v for k, v in config.items() if v is not None}
        return ChatVertexAI(
            project=self.vertex_project,
            location=self.vertex_region,
            model_name=self.model_name,
            timeout=self._timeout,
            credentials=build_creds(),
            **kwargs,
        )

    def _add_usage(self, inc: Dict[str, int]) -> None:
        if self.last_usage is None:
            self.last_usage = inc
            return
        for k, v in inc.items():
            self.last_usage[k] = (self.last_usage.get(k, 0) or 0) + (v or 0)

    def _merge_usage(self, resp: Any) -> None:
        if resp is None:
            return
        usage = getattr(resp, "usage", None)
        if usage is None:
            return
        details = getattr(usage, "input_tokens_details", None)
        self._add_usage({
            "prompt_token_count": getattr(usage, "input_tokens", 0) or 0,
            "candidates_token_count": getattr(usage, "output_tokens", 0) or 0,
            "total_token_count": getattr(usage, "total_tokens", 0) or 0,
            "cached_content_token_count": getattr(details, "cached_tokens", 0) if details else 0,
        })

    def _merge_vertex_usage(self, usage_metadata: Any) -> None:
        if not usage_metadata:
            return

        def get(*keys: str) -> int:
            for k in keys:
                if isinstance(usage_metadata, dict):
                    v = usage_metadata.get(k)
                else:
                    v = getattr(usage_metadata, k, None)
                if v:
                    return int(v)
            return 0

        self._add_usage({
            "prompt_token_count": get("prompt_token_count", "input_tokens"),
            "candidates_token_count": get("candidates_token_count", "output_tokens"),
            "total_token_count": get("total_token_count", "total_tokens"),
            "cached_content_token_count": get("cached_content_token_count"),
        })

    def _merge_langchain_usage(self, resp: Any) -> None:
        usage_md = getattr(resp, "usage_metadata", None)
        if usage_md is None:
            rm = getattr(resp, "response_metadata", None)
            if isinstance(rm, dict):
                usage_md = rm.get("usage_metadata")
        self._merge_vertex_usage(usage_md)

    def get_accrued_usage(self) -> Dict[str, int]:
        return dict(self.last_usage or {})


class LlmClient(BaseLlmClient):
    """
    One-shot generation:

        result = await llm.generate("some prompt", grounded=True)
        result.text, result.citations

    Under the hood:
    - Vertex: ChatVertexAI.ainvoke, google_search tool for grounding
    - OpenAI: Responses API, web_search tool for grounding
    """

    async def _generate_once(
        self,
        content: str,
        grounded: bool,
        response_mime_type: Optional[str],
        response_schema: Optional[Dict[str, Any]],
    ) -> GenerationResult:
        """
        Single HTTP call without retries/backoff.
        """
        if self.provider == "vertex":
            llm = self._build_vertex(
                response_mime_type=response_mime_type,
                response_schema=_to_vertex_schema(response_schema) if response_schema else None,
            )
            runnable = llm.bind_tools([GOOGLE_SEARCH_TOOL]) if grounded else llm
            resp = await runnable.ainvoke(content)
            self._merge_langchain_usage(resp)
            return GenerationResult(
                text=_content_to_text(getattr(resp, "content", resp)),
                citations=_vertex_citations(resp),
            )

        params = dict(self._openai_params)
        text_cfg: Dict[str, Any] = dict(params.pop("text", None) or {})
        if response_schema is not None:
            text_cfg["format"] = {
                "type": "json_schema",
                "name": "structured_output",
                "schema": response_schema,
                "strict": True,
            }
        elif response_mime_type == "application/json":
            text_cfg["format"] = {"type": "json_object"}

        kwargs: Dict[str, Any] = {"model": self.model_name, "input": content}
        if grounded:
            kwargs["tools"] = [OPENAI_WEB_SEARCH_TOOL]
        if text_cfg:
            kwargs["text"] = text_cfg

        resp = await self._openai().responses.create(**kwargs, **params)
        self._merge_usage(resp)
        return GenerationResult(
            text=(getattr(resp, "output_text", "") or "").strip(),
            citations=_openai_citations(resp),
        )

    async def generate(
        self,
        content: str,
        *,
        grounded: bool = False,
        response_mime_type: Optional[str] = None,
        response_schema: Optional[Dict[str, Any]] = None,
        retries: Optional[int] = None,
    ) -> GenerationResult:
        """
        Async call with global 429/timeout backoff + retries.
        """
        return await call_with_retries(
            lambda: self._generate_once(content, grounded, response_mime_type, response_schema),
            retries=retries or self.retries,
            log=lambda msg: logger.info(f"[LLM-RETRY] {msg}"),
        )


class ChatLlmClient(BaseLlmClient):
    """
    Streaming chat:

        session = chat_llm.create_session("system context")
        async for fragment in session.send_stream("hello"):
            ...

    Under the hood:
    - Vertex: ChatVertexAI.astream(messages)
    - OpenAI: Responses API with stream=True and input=[{role, content}, ...]
    """

    def create_session(self, system_context: str) -> "RemoteChatSession":
        return RemoteChatSession(self, system_context)

    def _to_openai_messages(self, messages: List[BaseMessage]) -> List[Dict[str, str]]:
        out: List[Dict[str, str]] = []
        for m in messages:
            if isinstance(m, SystemMessage):
                role = "developer"
            elif isinstance(m, HumanMessage):
                role = "user"
            elif isinstance(m, AIMessage):
                role = "assistant"
            else:
                role = "user"
            out.append({"role": role, "content": str(m.content)})
        return out

    async def astream(self, messages: List[BaseMessage]) -> AsyncIterator[str]:
        """
        Yields text fragments in arrival order. Not retried: a stream cannot be restarted.
        """
        if self.provider == "vertex":
            llm = self._build_vertex()
            async for chunk in llm.astream(messages):
                self._merge_langchain_usage(chunk)
                text = _content_to_text(chunk.content)
                if text:
                    yield text
            return

        stream = await self._openai().responses.create(
            model=self.model_name,
            input=self._to_openai_messages(messages),
            stream=True,
            **self._openai_params,
        )
        async for event in stream:
            event_type = getattr(event, "type", "")
            if event_type == "response.output_text.delta":
                if event.delta:
                    yield event.delta
            elif event_type == "response.completed":
                self._merge_usage(getattr(event, "response", None))
            elif event_type in ("response.failed", "error"):
                raise RuntimeError(f"OpenAI stream failed: {event}")


class RemoteChatSession:
    """
    A remote multi-turn conversation with a fixed system context.
    The exchange is committed to history only once its stream completes.
    """

    def __init__(self, client: Any, system_context: str):
        self._client = client
        self.system_context = system_context
        self._history = ChatMessageHistory()

    @property
    def messages(self) -> List[BaseMessage]:
        return list(self._history.messages)

    async def send_stream(self, text: str) -> AsyncIterator[str]:
        messages = [SystemMessage(content=self.system_context), *self._history.messages, HumanMessage(content=text)]
        parts: List[str] = []
        async for fragment in self._client.astream(messages):
            parts.append(fragment)
            yield fragment
        self._history.add_message(HumanMessage(content=text))
        self._history.add_message(AIMessage(content="".join(parts)))
