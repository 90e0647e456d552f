"""Translation orchestrator — per-call driver tying cache, batching and scheduling together.

For one list of input texts:
  1. Pass through inputs that need no translation (same language, noise)
  2. Serve cache hits
  3. Deduplicate the remaining texts by content
  4. Split unique texts into budget-bounded chunks and dispatch one
     scheduled + retried provider call per chunk (or one per text when
     batching is off)
  5. On a batch parse failure re-issue that chunk item by item
  6. Cache every fresh result once, fan it out to all of its positions

The returned list is aligned index-for-index with the input.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from translate_gateway.core import metrics
from translate_gateway.core.config import TranslatorConfig
from translate_gateway.gateway.batching import is_skippable_segment, split_with_budget
from translate_gateway.gateway.cache import MISSING, ResultCache, make_cache_key
from translate_gateway.gateway.errors import Aborted, ParseFailure, TranslationFailed
from translate_gateway.gateway.jobs import AbortController, JobRegistry
from translate_gateway.gateway.providers import BaseProvider
from translate_gateway.gateway.retry import RetryOptions, scheduled_fetch
from translate_gateway.gateway.scheduler import ConcurrencyScheduler
from translate_gateway.gateway.types import BatchBudget, ItemResult, PendingText, TranslateParams

logger = logging.getLogger(__name__)

# (text, translated text or the error that ended it)
_Outcome = tuple[str, Any]


def lang_equals(a: str | None, b: str | None) -> bool:
    """Case-insensitive, prefix-tolerant language match ("en" == "en-US")."""
    x = (a or "").lower()
    y = (b or "").lower()
    if not x or not y:
        return False
    return x == y or x.startswith(y) or y.startswith(x)


@dataclass
class _Call:
    """State shared by every request issued for one translate call."""

    params: TranslateParams
    controller: AbortController
    pending: dict[str, PendingText] = field(default_factory=dict)


class TranslationOrchestrator:
    """Drives one translate call through cache, batching, scheduler and retries.

    Usage:
        orchestrator = TranslationOrchestrator(scheduler, cache, jobs, provider, config)
        outputs = await orchestrator.translate(["Hello", "World"], "en", "de", job_id="page-1")
    """

    def __init__(
        self,
        scheduler: ConcurrencyScheduler,
        cache: ResultCache,
        jobs: JobRegistry,
        provider: BaseProvider,
        config: TranslatorConfig,
        rng: random.Random | None = None,
    ):
        self.scheduler = scheduler
        self.cache = cache
        self.jobs = jobs
        self.provider = provider
        self.config = config
        self._rng = rng

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def translate(
        self,
        texts: Sequence[str],
        source_lang: str | None = None,
        target_lang: str | None = None,
        job_id: str | None = None,
    ) -> list[str]:
        """Translate ``texts``; raises ``TranslationFailed`` if any item failed."""
        results = await self.translate_items(texts, source_lang, target_lang, job_id)
        if any(r.error is not None for r in results):
            raise TranslationFailed(results)
        return [r.text for r in results]

    async def translate_items(
        self,
        texts: Sequence[str],
        source_lang: str | None = None,
        target_lang: str | None = None,
        job_id: str | None = None,
    ) -> list[ItemResult]:
        """Translate ``texts`` and report a per-item outcome.

        A cancelled job raises ``Aborted``; any other terminal failure is
        attached to the affected items only.
        """
        workflow = self.config.workflow
        params = TranslateParams(
            source_lang=source_lang or workflow.source_lang,
            target_lang=target_lang or workflow.target_lang,
            job_id=job_id or "",
        )
        results = [ItemResult(index=i, source_text="" if t is None else str(t)) for i, t in enumerate(texts)]
        call = _Call(params=params, controller=AbortController())

        same_language = (
            workflow.skip_if_source_equals_target
            and params.source_lang != "auto"
            and lang_equals(params.source_lang, params.target_lang)
        )

        for item in results:
            if same_language or is_skippable_segment(item.source_text, workflow.min_text_length):
                item.text = item.source_text
                item.skipped = True
                metrics.SKIPPED_SEGMENTS.inc()
                continue

            pending = call.pending.get(item.source_text)
            if pending is not None:
                pending.positions.append(item.index)
                continue

            key = self._cache_key(item.source_text, params)
            cached = self.cache.get(key)
            if cached is not MISSING:
                item.text = cached
                item.cached = True
                continue
            call.pending[item.source_text] = PendingText(
                text=item.source_text, cache_key=key, positions=[item.index]
            )

        if not call.pending:
            return results

        logger.info(
            "Translating %d unique texts (%d inputs) %s→%s",
            len(call.pending),
            len(results),
            params.source_lang,
            params.target_lang,
            extra={"job_id": params.job_id},
        )

        self.jobs.register(params.job_id, call.controller)
        try:
            outcomes = await self._dispatch(call)
        finally:
            self.jobs.unregister(params.job_id, call.controller)

        if call.controller.aborted:
            raise Aborted(f"Job {params.job_id or '-'} cancelled")

        for text, outcome in outcomes:
            for position in call.pending[text].positions:
                if isinstance(outcome, BaseException):
                    results[position].error = outcome
                else:
                    results[position].text = outcome

        failed = sum(1 for r in results if r.error is not None)
        if failed:
            logger.warning(
                "%d of %d items failed",
                failed,
                len(results),
                extra={"job_id": params.job_id},
            )
        return results

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    @property
    def batching_enabled(self) -> bool:
        return self.config.provider.batching.enabled and self.provider.supports_batch

    def _cache_key(self, text: str, params: TranslateParams) -> str:
        return make_cache_key(
            provider=self.provider.name,
            model=self.provider.model,
            source_lang=params.source_lang,
            target_lang=params.target_lang,
            text=text,
        )

    async def _dispatch(self, call: _Call) -> list[_Outcome]:
        texts = list(call.pending)

        if self.batching_enabled:
            batching = self.config.provider.batching
            budget = BatchBudget(
                max_items=batching.max_items,
                max_chars=batching.max_chars,
                token_budget=batching.token_budget,
            )
            chunks = split_with_budget(texts, budget)
            logger.debug("Split %d texts into %d chunks", len(texts), len(chunks))
            chunk_outcomes = await asyncio.gather(*(self._run_chunk(call, chunk) for chunk in chunks))
            return [outcome for chunk in chunk_outcomes for outcome in chunk]

        return await self._run_singles(call, texts)

    async def _run_chunk(self, call: _Call, chunk: list[str]) -> list[_Outcome]:
        try:
            outputs = await self._fetch(
                call,
                lambda: self.provider.translate_batch(chunk, call.params),
                kind="batch",
            )
            if not isinstance(outputs, list) or len(outputs) != len(chunk):
                received = len(outputs) if isinstance(outputs, list) else type(outputs).__name__
                raise ParseFailure(f"expected {len(chunk)} outputs, got {received}", raw=str(outputs))
        except ParseFailure as e:
            # Contain the fallback to this chunk only
            logger.warning(
                "Batch of %d failed to parse (%s); retrying item by item",
                len(chunk),
                e,
                extra={"job_id": call.params.job_id},
            )
            metrics.BATCH_FALLBACKS.inc()
            return await self._run_singles(call, chunk)
        except Aborted as e:
            return [(text, e) for text in chunk]
        except Exception as e:
            logger.error("Batch of %d failed: %s", len(chunk), e, extra={"job_id": call.params.job_id})
            return [(text, e) for text in chunk]

        outcomes = list(zip(chunk, outputs))
        for text, value in outcomes:
            self._store(call, text, value)
        return outcomes

    async def _run_singles(self, call: _Call, texts: list[str]) -> list[_Outcome]:
        async def _one(text: str) -> _Outcome:
            try:
                value = await self._fetch(
                    call,
                    lambda: self.provider.translate_one(text, call.params),
                    kind="single",
                )
            except Aborted as e:
                return text, e
            except Exception as e:
                logger.error("Translation failed for one item: %s", e, extra={"job_id": call.params.job_id})
                return text, e
            self._store(call, text, value)
            return text, value

        return list(await asyncio.gather(*(_one(text) for text in texts)))

    async def _fetch(self, call: _Call, request: Callable[[], Awaitable[Any]], kind: str) -> Any:
        """One logical provider call: scheduled, retried and cancellable."""
        limits = self.config.provider.limits

        async def _operation() -> Any:
            return await call.controller.run(request())

        try:
            result = await scheduled_fetch(
                self.scheduler,
                _operation,
                RetryOptions.from_config(self.config.provider.retry),
                throttle_window_ms=limits.throttle_window_ms,
                signal=call.controller,
                rng=self._rng,
            )
        except Aborted:
            metrics.PROVIDER_CALLS.labels(kind=kind, outcome="aborted").inc()
            raise
        except Exception:
            metrics.PROVIDER_CALLS.labels(kind=kind, outcome="error").inc()
            raise
        metrics.PROVIDER_CALLS.labels(kind=kind, outcome="success").inc()
        return result

    def _store(self, call: _Call, text: str, value: str) -> None:
        if call.controller.aborted:
            return
        self.cache.set(call.pending[text].cache_key, value)
