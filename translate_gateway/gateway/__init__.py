"""Translation Gateway Layer.

Provides async infrastructure for dispatching text to translation
providers with:
  - Concurrency Scheduler (FIFO, concurrency cap, jitter, throttle window)
  - Token Bucket Rate Limiter (rps + burst)
  - Retry Policy (exponential backoff with jitter, status classification)
  - Batch Splitter (item/char/token budgets)
  - Result Cache (LRU + TTL)
  - Job Registry (per-job cancellation)
  - Provider Adapters (custom endpoint, OpenAI-compatible)
"""
