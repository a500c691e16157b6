import uuid
from datetime import date, datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from ..config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE, RL_MATCH_ACTION_LIMIT, RL_WINDOW_SECONDS
from ..deps import get_match_facade, require_actor_user_id
from ..errors import MatchEngineError
from ..schemas import (
    ActionOut,
    CandidateOut,
    CandidatePageOut,
    DailyBatchOut,
    FactorScoreOut,
    LikerOut,
    MatchOut,
    StatsOut,
)
from ..services.facade import ActionResult, ActionStatus, MatchFacade
from ..services.rate_limit import rate_limit_dependency
from ..services.scoring import common_factors, match_quality

router = APIRouter()
scaffold_router = APIRouter()

RL_MATCH_ACTION = rate_limit_dependency("match_action", RL_MATCH_ACTION_LIMIT, RL_WINDOW_SECONDS)

_HTTP_STATUS = {
    ActionStatus.INVALID: 400,
    ActionStatus.BLOCKED: 403,
    ActionStatus.CONFLICT: 409,
    ActionStatus.QUOTA_EXCEEDED: 429,
}
_ERROR_STATUS = {"invalid": 400, "blocked": 403, "conflict": 409, "quota_exceeded": 429}


def _target(raw: str) -> str:
    try:
        return str(uuid.UUID(raw.strip()))
    except ValueError:
        raise HTTPException(status_code=400, detail="target_id must be a valid UUID")


def _engine_error(exc: MatchEngineError) -> HTTPException:
    return HTTPException(status_code=_ERROR_STATUS.get(exc.code, 400), detail=str(exc))


def _action_response(target_id: str, actor_id: str, result: ActionResult) -> ActionOut:
    if not result.ok:
        headers = None
        detail: Any = {"code": result.status.value, "message": result.message}
        if result.status == ActionStatus.QUOTA_EXCEEDED and result.resets_at is not None:
            wait = max(1, int((result.resets_at - datetime.now(timezone.utc)).total_seconds()))
            headers = {"Retry-After": str(wait)}
            detail.update({"remaining": 0, "limit": result.limit, "resets_at": result.resets_at.isoformat()})
        raise HTTPException(status_code=_HTTP_STATUS[result.status], detail=detail, headers=headers)

    record = result.record
    return ActionOut(
        status=result.status.value,
        action=result.action,
        transitioned=result.transitioned,
        is_new_mutual_match=result.is_new_mutual_match,
        target_user_id=target_id,
        my_action=record.action_of(actor_id) if record else None,
        their_action=record.action_of(target_id) if record else None,
        matched_at=record.matched_at if record else None,
        remaining=result.remaining,
        limit=result.limit,
        resets_at=result.resets_at,
    )


@scaffold_router.get("/health")
def match_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "match"}


@router.get("/matches/candidates", response_model=CandidatePageOut)
def get_candidates(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    include_acted: bool = False,
    actor_id: str = Depends(require_actor_user_id),
    facade: MatchFacade = Depends(get_match_facade),
) -> CandidatePageOut:
    try:
        ranked = facade.find_candidates(actor_id, page=page, page_size=page_size, include_acted=include_acted)
        actor = facade.profiles.get_profile(actor_id)
    except MatchEngineError as exc:
        raise _engine_error(exc)

    results = []
    for rc in ranked.results:
        p = rc.profile
        results.append(
            CandidateOut(
                user_id=p.user_id,
                compatibility=rc.score.overall,
                match_quality=match_quality(rc.score.overall),
                breakdown={k: FactorScoreOut(score=v.score, weight=v.weight) for k, v in rc.score.breakdown.items()},
                common_factors=common_factors(actor, p) if actor else [],
                is_premium=p.is_premium,
                is_boosted=rc.is_boosted,
                age=p.age,
                gender=p.gender,
                city=p.city,
                country=p.country,
                religion=p.religion,
                education_level=p.education_level,
                occupation=p.occupation,
                profile_completeness=p.profile_completeness,
            )
        )
    return CandidatePageOut(page=ranked.page, page_size=ranked.page_size, total_count=ranked.total_count, results=results)


@router.post("/matches/{target_id}/like", response_model=ActionOut, dependencies=[RL_MATCH_ACTION])
def like(target_id: str, actor_id: str = Depends(require_actor_user_id), facade: MatchFacade = Depends(get_match_facade)) -> ActionOut:
    target = _target(target_id)
    return _action_response(target, actor_id, facade.process_like(actor_id, target, is_super=False))


@router.post("/matches/{target_id}/super-like", response_model=ActionOut, dependencies=[RL_MATCH_ACTION])
def super_like(target_id: str, actor_id: str = Depends(require_actor_user_id), facade: MatchFacade = Depends(get_match_facade)) -> ActionOut:
    target = _target(target_id)
    return _action_response(target, actor_id, facade.process_like(actor_id, target, is_super=True))


@router.post("/matches/{target_id}/dislike", response_model=ActionOut)
def dislike(target_id: str, actor_id: str = Depends(require_actor_user_id), facade: MatchFacade = Depends(get_match_facade)) -> ActionOut:
    target = _target(target_id)
    return _action_response(target, actor_id, facade.dislike(actor_id, target))


@router.post("/matches/{target_id}/block", response_model=ActionOut)
def block(target_id: str, actor_id: str = Depends(require_actor_user_id), facade: MatchFacade = Depends(get_match_facade)) -> ActionOut:
    target = _target(target_id)
    return _action_response(target, actor_id, facade.block(actor_id, target))


@router.post("/matches/{target_id}/unblock", response_model=ActionOut)
def unblock(target_id: str, actor_id: str = Depends(require_actor_user_id), facade: MatchFacade = Depends(get_match_facade)) -> ActionOut:
    target = _target(target_id)
    return _action_response(target, actor_id, facade.unblock(actor_id, target))


@router.post("/matches/{target_id}/unmatch", response_model=ActionOut)
def unmatch(target_id: str, actor_id: str = Depends(require_actor_user_id), facade: MatchFacade = Depends(get_match_facade)) -> ActionOut:
    target = _target(target_id)
    return _action_response(target, actor_id, facade.unmatch(actor_id, target))


@router.get("/matches/mutual", response_model=list[MatchOut])
def get_mutual_matches(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    actor_id: str = Depends(require_actor_user_id),
    facade: MatchFacade = Depends(get_match_facade),
) -> list[MatchOut]:
    try:
        listings = facade.list_mutual_matches(actor_id, limit=limit, offset=offset)
    except MatchEngineError as exc:
        raise _engine_error(exc)
    return [
        MatchOut(
            user_id=item.user_id,
            matched_at=item.record.matched_at,
            compatibility=item.compatibility,
            match_quality=match_quality(item.compatibility) if item.compatibility is not None else None,
            age=item.profile.age if item.profile else None,
            city=item.profile.city if item.profile else None,
            religion=item.profile.religion if item.profile else None,
        )
        for item in listings
    ]


@router.get("/matches/likes-received", response_model=list[LikerOut])
def get_likes_received(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    actor_id: str = Depends(require_actor_user_id),
    facade: MatchFacade = Depends(get_match_facade),
) -> list[LikerOut]:
    actor = facade.profiles.get_profile(actor_id)
    if actor is None:
        raise HTTPException(status_code=400, detail=f"unknown user {actor_id}")
    if not actor.is_premium:
        raise HTTPException(status_code=403, detail="Upgrade to premium to see who liked you")
    try:
        listings = facade.list_who_liked_me(actor_id, limit=limit, offset=offset)
    except MatchEngineError as exc:
        raise _engine_error(exc)
    return [
        LikerOut(
            user_id=item.user_id,
            action=item.record.action_of(item.user_id),
            acted_at=item.record.acted_at_of(item.user_id),
            compatibility=item.compatibility,
            age=item.profile.age if item.profile else None,
            city=item.profile.city if item.profile else None,
        )
        for item in listings
    ]


@router.get("/matches/daily", response_model=DailyBatchOut)
def get_daily_batch(
    day: date | None = Query(default=None, alias="date"),
    actor_id: str = Depends(require_actor_user_id),
    facade: MatchFacade = Depends(get_match_facade),
) -> DailyBatchOut:
    try:
        batch = facade.get_daily_batch(actor_id, day=day)
    except MatchEngineError as exc:
        raise _engine_error(exc)
    return DailyBatchOut(**batch.to_dict())


@router.get("/matches/stats", response_model=StatsOut)
def get_match_stats(actor_id: str = Depends(require_actor_user_id), facade: MatchFacade = Depends(get_match_facade)) -> StatsOut:
    return StatsOut(**facade.statistics(actor_id))
