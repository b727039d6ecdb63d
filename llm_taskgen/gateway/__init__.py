"""LLM Provider Gateway.

Async infrastructure for sending prompts to interchangeable providers with:
  - Provider Registry & Priority Selector (preferred → routed → default → fallback)
  - Rate Limit Tracker (per-provider cooldowns, exponential backoff)
  - Retry Engine (rate-limited / transient / fatal classification)
  - Concurrency-Bounded Queue (FIFO admission)
  - Task-to-Provider Router (fuzzy operation-name matching)
  - Provider Clients (uniform ``complete`` contract over each API)
"""
