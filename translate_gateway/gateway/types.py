"""Core types and DTOs for the translation gateway."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class TranslateParams:
    """Per-call parameters handed to a provider."""

    source_lang: str = "auto"
    target_lang: str = "zh-CN"
    job_id: str = ""


@dataclass
class ItemResult:
    """Outcome for one input position of a translate call."""

    index: int
    source_text: str
    text: str | None = None
    error: BaseException | None = None
    cached: bool = False
    skipped: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SchedulerStats:
    """Point-in-time scheduler snapshot."""

    running: int = 0
    queued: int = 0
    max_concurrent: int = 1
    effective_rate: float = 0.0
    burst_capacity: int = 1
    throttled_for_ms: int = 0

    def to_dict(self) -> dict:
        return {
            "running": self.running,
            "queued": self.queued,
            "max_concurrent": self.max_concurrent,
            "effective_rate": self.effective_rate,
            "burst_capacity": self.burst_capacity,
            "throttled_for_ms": self.throttled_for_ms,
        }


@dataclass(frozen=True)
class RetryEvent:
    """Passed to the ``on_retry`` hook before each backoff sleep."""

    attempt: int  # 1-based retry number
    delay_ms: int
    status_code: int  # 0 when the error carried no status
    error: BaseException


@dataclass(frozen=True)
class BatchBudget:
    """Ceilings enforced simultaneously on every chunk."""

    max_items: int = 20
    max_chars: int = 8000
    token_budget: int = 2000


@dataclass
class PendingText:
    """A unique cache-missing text and every input position it occupies."""

    text: str
    cache_key: str
    positions: list[int] = field(default_factory=list)
