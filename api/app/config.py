import json
import os
from dataclasses import dataclass, field
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

MATCH_TIMEZONE = os.getenv("MATCH_TIMEZONE", "Asia/Kolkata")
DEFAULT_BATCH_SIZE = int(os.getenv("DEFAULT_BATCH_SIZE", "10"))
DEFAULT_PAGE_SIZE = int(os.getenv("DEFAULT_PAGE_SIZE", "20"))
MAX_PAGE_SIZE = int(os.getenv("MAX_PAGE_SIZE", "50"))
PAIR_LOCK_TIMEOUT_SECONDS = float(os.getenv("PAIR_LOCK_TIMEOUT_SECONDS", "5"))
BATCH_MAX_WORKERS = int(os.getenv("BATCH_MAX_WORKERS", "8"))

FACTORS = ("age", "location", "religion", "lifestyle", "education", "horoscope", "income")
TIERS = ("free", "premium")

DEFAULT_MATCHING_CONFIG: dict[str, Any] = {
    "weights": {
        "age": float(os.getenv("AGE_W", "20")),
        "location": float(os.getenv("LOCATION_W", "15")),
        "religion": float(os.getenv("RELIGION_W", "20")),
        "lifestyle": float(os.getenv("LIFESTYLE_W", "15")),
        "education": float(os.getenv("EDUCATION_W", "15")),
        "horoscope": float(os.getenv("HOROSCOPE_W", "15")),
        "income": float(os.getenv("INCOME_W", "0")),
    },
    "dailyLikeLimit": {
        "free": int(os.getenv("FREE_DAILY_LIKES", "20")),
        "premium": int(os.getenv("PREMIUM_DAILY_LIKES", "100")),
    },
    "dailySuperLikeLimit": {
        "free": int(os.getenv("FREE_DAILY_SUPER_LIKES", "1")),
        "premium": int(os.getenv("PREMIUM_DAILY_SUPER_LIKES", "10")),
    },
    "timezone": MATCH_TIMEZONE,
    "defaultBatchSize": DEFAULT_BATCH_SIZE,
}

if os.getenv("MATCHING_CONFIG_JSON"):
    try:
        DEFAULT_MATCHING_CONFIG.update(json.loads(os.getenv("MATCHING_CONFIG_JSON", "{}")))
    except json.JSONDecodeError:
        pass

RL_MATCH_ACTION_LIMIT = int(os.getenv("RL_MATCH_ACTION_LIMIT", "60"))
RL_WINDOW_SECONDS = int(os.getenv("RL_WINDOW_SECONDS", "60"))


@dataclass(frozen=True)
class MatchingConfig:
    """Engine configuration values.

    Weights are percentages and must add up to 100. Limits are keyed by
    tier; unknown tiers fall back to the ``free`` limits.
    """

    weights: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_MATCHING_CONFIG["weights"]))
    daily_like_limit: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_MATCHING_CONFIG["dailyLikeLimit"]))
    daily_super_like_limit: Mapping[str, int] = field(
        default_factory=lambda: dict(DEFAULT_MATCHING_CONFIG["dailySuperLikeLimit"])
    )
    timezone: str = MATCH_TIMEZONE
    default_batch_size: int = DEFAULT_BATCH_SIZE

    def __post_init__(self) -> None:
        unknown = set(self.weights) - set(FACTORS)
        if unknown:
            raise ValueError(f"unknown scoring factors: {sorted(unknown)}")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("scoring weights must be non-negative")
        total = sum(float(w) for w in self.weights.values())
        if abs(total - 100.0) > 1e-6:
            raise ValueError(f"scoring weights must sum to 100, got {total}")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {self.timezone}") from exc
        if self.default_batch_size < 1:
            raise ValueError("defaultBatchSize must be positive")

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any] | None = None) -> "MatchingConfig":
        merged: dict[str, Any] = {**DEFAULT_MATCHING_CONFIG, **dict(raw or {})}
        weights = {k: 0.0 for k in FACTORS}
        weights.update({str(k): float(v) for k, v in (merged.get("weights") or {}).items()})
        return cls(
            weights=weights,
            daily_like_limit={str(k): int(v) for k, v in (merged.get("dailyLikeLimit") or {}).items()},
            daily_super_like_limit={str(k): int(v) for k, v in (merged.get("dailySuperLikeLimit") or {}).items()},
            timezone=str(merged.get("timezone") or MATCH_TIMEZONE),
            default_batch_size=int(merged.get("defaultBatchSize") or DEFAULT_BATCH_SIZE),
        )

    def limit_for(self, action_type: str, tier: str) -> int:
        limits = self.daily_super_like_limit if action_type == "super_like" else self.daily_like_limit
        if tier in limits:
            return int(limits[tier])
        return int(limits.get("free", 0))

    @property
    def zone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


def load_matching_config() -> MatchingConfig:
    return MatchingConfig.from_mapping(DEFAULT_MATCHING_CONFIG)
