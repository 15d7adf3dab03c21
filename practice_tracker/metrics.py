from prometheus_client import Counter, Histogram
# Prometheus metrics definitions

# Entries parsed, labelled by the path that produced the result (ai/heuristic)
entry_parse_total = Counter(
    "entry_parse_total", "Practice entries parsed", ["method"]
)

# AI parse attempts that fell back to the heuristic parser
# cause: provider, timeout, invalid_json, schema
ai_fallback_total = Counter(
    "ai_fallback_total", "AI parse failures that fell back to heuristics", ["cause"]
)

# Governor rejections (rate_minute, rate_day, quota_month, limiter)
ai_limit_reject_total = Counter(
    "ai_limit_reject_total", "AI calls rejected by usage limits", ["kind"]
)

ai_tokens_total = Counter(
    "ai_tokens_total", "Tokens consumed by AI calls", ["endpoint"]
)

# Usage ledger writes that failed (never surfaced to callers)
ai_usage_record_fail_total = Counter(
    "ai_usage_record_fail_total", "Failed AI usage record writes"
)

_ai_latency_buckets = (
    0.25,
    0.5,
    1.0,
    2.0,
    4.0,
    8.0,
    16.0,
)

ai_latency_seconds = Histogram(
    "ai_latency_seconds", "Latency of chat completion calls", ["endpoint"], buckets=_ai_latency_buckets
)

# GPT timeout counter
# Incremented when call to GPT API times out
gpt_timeout_total = Counter(
    "gpt_timeout_total", "Number of GPT timeouts"
)

weekly_insights_total = Counter(
    "weekly_insights_total", "Weekly insights generated", ["method"]
)

__all__ = [
    "entry_parse_total",
    "ai_fallback_total",
    "ai_limit_reject_total",
    "ai_tokens_total",
    "ai_usage_record_fail_total",
    "ai_latency_seconds",
    "gpt_timeout_total",
    "weekly_insights_total",
]
