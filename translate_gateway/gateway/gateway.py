"""Translation Gateway — service object owning the shared gateway components.

One instance per process (created in the FastAPI lifespan) holds:
  1. ConcurrencyScheduler: the single dispatch point for provider calls
  2. ResultCache: translations keyed by provider/model/languages/text
  3. JobRegistry: cancellation handles grouped by job id
  4. The provider adapter built from the current configuration

Configuration is hot-reloadable: ``update_config`` deep-merges a partial
dict and every component is reconfigured in place, so queued and in-flight
work is kept.

Usage:
    gateway = TranslationGateway(TranslatorConfig())

    outputs = await gateway.translate(["Hello"], "en", "de", job_id="tab-1")
    gateway.cancel("tab-1")
    gateway.update_config({"provider": {"limits": {"rps": 3}}})
"""

from __future__ import annotations

import logging
import random
import time
from collections.abc import Callable, Sequence
from typing import Any

from translate_gateway.core.config import TranslatorConfig
from translate_gateway.gateway.cache import ResultCache
from translate_gateway.gateway.jobs import JobRegistry
from translate_gateway.gateway.orchestrator import TranslationOrchestrator
from translate_gateway.gateway.providers import BaseProvider, get_provider
from translate_gateway.gateway.scheduler import ConcurrencyScheduler
from translate_gateway.gateway.types import ItemResult

logger = logging.getLogger(__name__)


class TranslationGateway:
    """Main gateway service.

    Integrates:
      - ConcurrencyScheduler: concurrency cap, token bucket, jitter, throttle
      - ResultCache: LRU + TTL result cache
      - JobRegistry: per-job cancellation
      - Provider adapters: protocol-specific HTTP calls
    """

    def __init__(
        self,
        config: TranslatorConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        rng: random.Random | None = None,
    ):
        self.config = config or TranslatorConfig()
        self._rng = rng
        limits = self.config.provider.limits

        self.scheduler = ConcurrencyScheduler(
            max_concurrent=limits.max_concurrent,
            rps=limits.rps,
            burst=limits.burst,
            jitter_ms=limits.jitter_ms,
            clock=clock,
            rng=rng,
        )
        self.cache = ResultCache.from_config(self.config.cache, clock=clock)
        self.jobs = JobRegistry()
        self.provider: BaseProvider = get_provider(self.config.provider, self.config.workflow)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    def apply_config(self, config: TranslatorConfig) -> None:
        """Reconfigure every component in place from ``config``."""
        limits = config.provider.limits
        self.scheduler.update_config(
            max_concurrent=limits.max_concurrent,
            rps=limits.rps,
            burst=limits.burst,
            jitter_ms=limits.jitter_ms,
        )
        self.cache.update_options(
            size=config.cache.size,
            ttl_ms=config.cache.ttl_ms,
            enabled=config.cache.enabled,
        )
        # Calls already running keep the adapter they started with
        self.provider = get_provider(config.provider, config.workflow)
        self.config = config
        logger.info(
            "Config applied: provider=%s model=%s batching=%s cache=%s",
            self.provider.name,
            self.provider.model or "-",
            config.provider.batching.enabled,
            config.cache.enabled,
        )

    def update_config(self, partial: dict[str, Any]) -> TranslatorConfig:
        """Deep-merge ``partial`` into the current config, apply and return it."""
        config = self.config.merged(partial)
        self.apply_config(config)
        return config

    # ------------------------------------------------------------------
    # Translation
    # ------------------------------------------------------------------

    def orchestrator(self) -> TranslationOrchestrator:
        """Orchestrator bound to the current provider and configuration."""
        return TranslationOrchestrator(
            scheduler=self.scheduler,
            cache=self.cache,
            jobs=self.jobs,
            provider=self.provider,
            config=self.config,
            rng=self._rng,
        )

    async def translate(
        self,
        texts: Sequence[str],
        source_lang: str | None = None,
        target_lang: str | None = None,
        job_id: str | None = None,
    ) -> list[str]:
        return await self.orchestrator().translate(texts, source_lang, target_lang, job_id)

    async def translate_items(
        self,
        texts: Sequence[str],
        source_lang: str | None = None,
        target_lang: str | None = None,
        job_id: str | None = None,
    ) -> list[ItemResult]:
        return await self.orchestrator().translate_items(texts, source_lang, target_lang, job_id)

    def cancel(self, job_id: str) -> int:
        """Abort everything registered under ``job_id``; returns the handle count."""
        return self.jobs.abort(job_id)

    # ------------------------------------------------------------------
    # Status / lifecycle
    # ------------------------------------------------------------------

    def get_status(self) -> dict:
        """Get comprehensive gateway status."""
        return {
            "provider": {
                "type": self.provider.name,
                "model": self.provider.model,
                "batching": self.config.provider.batching.enabled,
            },
            "scheduler": self.scheduler.stats().to_dict(),
            "cache": self.cache.get_stats(),
            "active_jobs": self.jobs.active_jobs(),
        }

    def close(self) -> None:
        """Reject queued work and abort every registered job."""
        for job_id in self.jobs.active_jobs():
            self.jobs.abort(job_id)
        self.scheduler.close()
        logger.info("Translation gateway closed")
