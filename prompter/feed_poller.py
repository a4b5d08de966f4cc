# prompter/feed_poller.py

import asyncio
import logging
from typing import Any, Optional, Set, Tuple

from pydantic import ValidationError

from prompter.base_utils import BaseUtils
from prompter.entities import PLACEHOLDER_URI, HintCategory, MarketSnapshot, PollStatus
from prompter.errors import PollFetchError
from prompter.llm_client import root_cause
from prompter.prompts import MARKET_FETCH_PROMPT

logger = logging.getLogger("prompter_backend")

MALFORMED_MESSAGE = "Logic Sync Failure: The model returned a malformed response format."
EMPTY_MESSAGE = "Data Incomplete: The market feed returned an empty dataset for this asset."
GENERIC_MESSAGE = "Establishing Signal failed."

FETCH_HINTS = {
    "malformed": "The search engine could not structure the price data correctly. Retrying might solve this.",
    "empty": "No recent historical price data was found for this symbol on the web.",
    "generic": "Check your connection or verify the asset ticker symbol is correct.",
}


def classify_fetch_error(message: str) -> Tuple[HintCategory, str]:
    text = (message or "").lower()
    if "malformed" in text:
        category = "malformed"
    elif "empty" in text:
        category = "empty"
    else:
        category = "generic"
    return category, FETCH_HINTS[category]


def fetch_error(message: str) -> PollFetchError:
    message = message or GENERIC_MESSAGE
    category, hint = classify_fetch_error(message)
    return PollFetchError(message, category=category, hint=hint)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class FeedPoller(BaseUtils):
    """
    Re-fetches a grounded market snapshot for one subject symbol on a fixed period.

    Every subject change (and stop) bumps `generation`; a fetch only touches
    state when its generation is still current, so a late answer for a
    superseded subject is dropped. Within one generation, fetch results are
    applied in issue order (an older fetch never overwrites a newer one).

    Initial-fetch failures are kept in `error` unless a refresh already landed
    a snapshot; refresh failures are logged and the last good snapshot stays
    visible until the next tick.
    """

    def __init__(self, llm, *, interval: float = 15.0, history_points: int = 7):
        self.llm = llm
        self.interval = interval
        self.history_points = history_points
        self.symbol: Optional[str] = None
        self.snapshot: Optional[MarketSnapshot] = None
        self.error: Optional[PollFetchError] = None
        self._generation = 0
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._loading = False
        self._pending_refreshes = 0
        self._issued_seq = 0
        self._applied_seq = 0

    # -----------------------
    # State
    # -----------------------

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def status(self) -> PollStatus:
        if not self.is_running:
            return PollStatus.IDLE
        if self._loading:
            return PollStatus.LOADING
        if self.snapshot is None:
            return PollStatus.ERROR if self.error is not None else PollStatus.LOADING
        if self._pending_refreshes:
            return PollStatus.REFRESHING
        return PollStatus.READY

    # -----------------------
    # Lifecycle
    # -----------------------

    def start(self, symbol: str) -> Optional[asyncio.Task]:
        return self.set_subject(symbol)

    def set_subject(self, symbol: str) -> Optional[asyncio.Task]:
        """
        Swap the tracked subject: cancel the timer, clear the snapshot, issue a
        fresh initial fetch and rearm the timer. Must run inside an event loop.
        Returns the initial fetch task, or None when the subject is unchanged.
        """
        normalized = (symbol or "").strip().upper()
        if not normalized:
            raise ValueError("poll subject must be a non-empty symbol")
        if normalized == self.symbol and self.is_running:
            return None

        self._cancel_timer()
        self._generation += 1
        generation = self._generation
        self.symbol = normalized
        self.snapshot = None
        self.error = None
        self._loading = True
        self._pending_refreshes = 0
        logger.debug(f"feed poller: subject {normalized} (generation {generation})")

        initial = self._spawn(self._run_fetch(generation, normalized, initial=True))
        self._timer = asyncio.create_task(self._tick(generation))
        return initial

    def refresh(self) -> Optional[asyncio.Task]:
        """Issue one refresh fetch now, as a timer tick would."""
        if self.symbol is None or not self.is_running:
            return None
        return self._spawn(self._run_fetch(self._generation, self.symbol, initial=False))

    def stop(self) -> None:
        """Teardown: cancel the timer and every in-flight fetch. No callback survives."""
        self._generation += 1
        self._cancel_timer()
        for task in list(self._inflight):
            task.cancel()
        self._loading = False
        self._pending_refreshes = 0
        logger.debug(f"feed poller stopped (generation {self._generation})")

    async def aclose(self) -> None:
        self.stop()
        await self.settle()

    async def settle(self) -> None:
        """Wait for every fetch issued so far to finish (or be cancelled)."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _tick(self, generation: int) -> None:
        while generation == self._generation:
            await asyncio.sleep(self.interval)
            if generation != self._generation:
                return
            self._spawn(self._run_fetch(generation, self.symbol, initial=False))

    async def _run_fetch(self, generation: int, symbol: str, *, initial: bool) -> None:
        self._issued_seq += 1
        seq = self._issued_seq
        if not initial:
            self._pending_refreshes += 1
        try:
            snapshot = await self.fetch_snapshot(symbol)
        except PollFetchError as e:
            if generation != self._generation:
                logger.debug(f"feed poller: dropping stale failure for {symbol}")
                return
            if initial and self.snapshot is None:
                self.error = e
                self.color_print(f"feed poller: initial fetch for {symbol} failed: {e.message}", color="red")
            elif initial:
                logger.warning(f"feed poller: initial fetch for {symbol} failed after a refresh landed: {e.message}")
            else:
                logger.warning(f"feed poller: refresh for {symbol} failed, keeping last snapshot: {e.message}")
        else:
            if generation != self._generation:
                logger.debug(f"feed poller: dropping stale snapshot for {symbol}")
                return
            if seq < self._applied_seq:
                logger.debug(f"feed poller: dropping out-of-order snapshot for {symbol}")
                return
            self._applied_seq = seq
            self.snapshot = snapshot
            self.error = None
        finally:
            if generation == self._generation:
                if initial:
                    self._loading = False
                else:
                    self._pending_refreshes = max(0, self._pending_refreshes - 1)

    # -----------------------
    # Fetch protocol
    # -----------------------

    async def fetch_snapshot(self, symbol: str) -> MarketSnapshot:
        """One grounded fetch. Raises PollFetchError with a classified hint."""
        prompt = self.unsafe_string_format(MARKET_FETCH_PROMPT, symbol=symbol, points=self.history_points)
        try:
            result = await self.llm.generate(prompt, grounded=True)
        except Exception as e:
            raise fetch_error(str(root_cause(e)).strip()) from e

        text = (result.text or "").strip()
        source_url = None
        if result.citations and result.citations[0].uri != PLACEHOLDER_URI:
            source_url = result.citations[0].uri

        recovered = self.sanitize_json_response(text)
        if not text or not recovered.startswith("{"):
            raise fetch_error(MALFORMED_MESSAGE)
        try:
            parsed = self.load_fault_tolerant_json(recovered)
        except ValueError as e:
            raise fetch_error(MALFORMED_MESSAGE) from e
        if not isinstance(parsed, dict):
            raise fetch_error(MALFORMED_MESSAGE)

        history = parsed.get("history")
        current_price = parsed.get("currentPrice")
        if not isinstance(history, list) or not history or not _is_number(current_price):
            raise fetch_error(EMPTY_MESSAGE)

        change = parsed.get("changePercent")
        try:
            return MarketSnapshot(
                currentPrice=current_price,
                changePercent=change if _is_number(change) else 0.0,
                history=history,
                sourceUrl=source_url,
            )
        except ValidationError as e:
            raise fetch_error(MALFORMED_MESSAGE) from e
