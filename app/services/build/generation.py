"""Generation caller -- retry, cancellation and continuation around the gateway.

:func:`app.clients.llm_client.generate` performs exactly one upstream
request.  :class:`GenerationCaller` is what the runner uses instead: it
retries transient failures with backoff, stops immediately once the build
is cancelled, and stitches together output that was cut off by the token
limit.
"""

import asyncio
import logging

from app.clients import llm_client
from app.config import settings
from app.errors import PERMANENT_KINDS, BuildCancelledError, GenerationError
from app.services.build.prompts import build_continuation_prompt

logger = logging.getLogger(__name__)


class GenerationCaller:
    """Per-build ``call(system_prompt, user_content) -> text``.

    *cancel_event* is the build's cancellation flag; it is checked before
    every attempt and interrupts backoff sleeps.
    """

    def __init__(self, model: str, cancel_event: asyncio.Event, *, max_tokens: int | None = None):
        self.model = model
        self.cancel_event = cancel_event
        self.max_tokens = max_tokens or settings.BUILD_MAX_TOKENS

    def _check_cancelled(self) -> None:
        if self.cancel_event.is_set():
            raise BuildCancelledError()

    async def _backoff(self, attempt: int, exc: GenerationError) -> None:
        delays = settings.LLM_RETRY_DELAYS
        delay = delays[min(attempt, len(delays) - 1)]
        if exc.retry_after:
            delay = max(delay, exc.retry_after)
        try:
            await asyncio.wait_for(self.cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
        raise BuildCancelledError()

    def _should_retry(self, exc: GenerationError) -> bool:
        if exc.kind in PERMANENT_KINDS:
            return settings.LLM_RETRY_ALL_ERRORS
        return exc.transient

    async def _once(self, system_prompt: str, user_content: str) -> llm_client.GenerationResult:
        return await llm_client.generate(
            self.model,
            system_prompt,
            [{"role": "user", "content": user_content}],
            max_tokens=self.max_tokens,
        )

    async def _continue(self, text: str, label: str) -> str:
        tail_chars = settings.CONTINUATION_TAIL_CHARS
        for n in range(settings.LLM_MAX_CONTINUATIONS):
            self._check_cancelled()
            logger.info("Output for %s truncated, continuation %d", label, n + 1)
            result = await self._once(build_continuation_prompt(label, text[-tail_chars:]), "Continue.")
            text += result.text
            if result.finish_reason != "length":
                break
        return text

    async def call(self, system_prompt: str, user_content: str, *, label: str = "the file") -> str:
        """Generate text, retrying and continuing as configured.

        Raises
        ------
        BuildCancelledError
            The build was cancelled before or between attempts.
        GenerationError
            Every attempt failed; the last error is re-raised with its kind.
        """
        attempts = settings.LLM_MAX_ATTEMPTS
        attempt = 0
        while True:
            self._check_cancelled()
            try:
                result = await self._once(system_prompt, user_content)
                text = result.text
                if result.finish_reason == "length" and text:
                    text = await self._continue(text, label)
                return text
            except GenerationError as exc:
                attempt += 1
                if not self._should_retry(exc) or attempt >= attempts:
                    raise
                logger.warning(
                    "Generation failed for %s (attempt %d/%d, %s): %s",
                    label, attempt, attempts, exc.kind, exc,
                )
                await self._backoff(attempt - 1, exc)
