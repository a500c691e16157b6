from datetime import date, datetime
from pydantic import BaseModel, Field


class FactorScoreOut(BaseModel):
    score: float
    weight: float


class CandidateOut(BaseModel):
    user_id: str
    compatibility: float
    match_quality: str
    breakdown: dict[str, FactorScoreOut] = Field(default_factory=dict)
    common_factors: list[str] = Field(default_factory=list)
    is_premium: bool = False
    is_boosted: bool = False
    age: int | None = None
    gender: str | None = None
    city: str | None = None
    country: str | None = None
    religion: str | None = None
    education_level: str | None = None
    occupation: str | None = None
    profile_completeness: int = 0


class CandidatePageOut(BaseModel):
    page: int
    page_size: int
    total_count: int
    results: list[CandidateOut]


class ActionOut(BaseModel):
    status: str
    action: str
    transitioned: bool = False
    is_new_mutual_match: bool = False
    target_user_id: str
    my_action: str | None = None
    their_action: str | None = None
    matched_at: datetime | None = None
    remaining: int | None = None
    limit: int | None = None
    resets_at: datetime | None = None


class MatchOut(BaseModel):
    user_id: str
    matched_at: datetime | None = None
    compatibility: float | None = None
    match_quality: str | None = None
    age: int | None = None
    city: str | None = None
    religion: str | None = None


class LikerOut(BaseModel):
    user_id: str
    action: str
    acted_at: datetime | None = None
    compatibility: float | None = None
    age: int | None = None
    city: str | None = None


class BatchEntryOut(BaseModel):
    candidate_id: str
    score: float


class DailyBatchOut(BaseModel):
    user_id: str
    batch_date: date
    generated_at: datetime
    entries: list[BatchEntryOut]


class StatsOut(BaseModel):
    likes_sent: int
    super_likes_sent: int
    likes_received: int
    mutual_matches: int
    blocked: int
    response_rate: float
