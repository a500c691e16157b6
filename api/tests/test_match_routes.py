import pytest

pytest.importorskip("fastapi")
from fastapi.testclient import TestClient

import app.main as m
from app.config import MatchingConfig
from app.deps import get_match_facade
from app.services import rate_limit
from app.services.facade import MatchFacade
from app.services.profiles import InMemoryProfileSource, ProfileAttributes
from app.services.quota import QuotaEnforcer
from app.services.rate_limit import SlidingWindowLimiter

ALICE = "00000000-0000-0000-0000-00000000000a"
BOB = "00000000-0000-0000-0000-00000000000b"
CARA = "00000000-0000-0000-0000-00000000000c"
PREM = "00000000-0000-0000-0000-0000000000ff"


def _headers(user_id: str) -> dict[str, str]:
    return {"X-Actor-User-Id": user_id}


def _client(monkeypatch, super_like_limit: int = 1):
    rate_limit.limiter.clear()
    monkeypatch.setattr(m, "wait_for_db", lambda *args, **kwargs: None)
    monkeypatch.setattr(m, "run_migrations", lambda *args, **kwargs: None)

    config = MatchingConfig.from_mapping({"dailySuperLikeLimit": {"free": super_like_limit, "premium": 10}})
    profiles = InMemoryProfileSource(
        [
            ProfileAttributes(user_id=ALICE, gender="male", age=30, religion="hindu", city="pune", country="india"),
            ProfileAttributes(user_id=BOB, gender="female", age=28, religion="hindu", city="pune", country="india"),
            ProfileAttributes(user_id=CARA, gender="female", age=29, religion="jain", tier="premium"),
            ProfileAttributes(user_id=PREM, gender="female", age=31, tier="premium"),
        ]
    )
    facade = MatchFacade(profiles, quota=QuotaEnforcer(config=config), config=config)
    monkeypatch.setitem(m.app.dependency_overrides, get_match_facade, lambda: facade)
    return TestClient(m.app), facade


def test_health(monkeypatch):
    client, _ = _client(monkeypatch)
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/_scaffold/match/health").json()["module"] == "match"


def test_actor_header_is_required_and_validated(monkeypatch):
    client, _ = _client(monkeypatch)
    assert client.get("/matches/candidates").status_code == 401
    assert client.get("/matches/candidates", headers=_headers("not-a-uuid")).status_code == 400


def test_candidates_are_ranked_with_breakdown(monkeypatch):
    client, _ = _client(monkeypatch)
    res = client.get("/matches/candidates", headers=_headers(ALICE), params={"page_size": 5})
    assert res.status_code == 200
    body = res.json()
    assert body["total_count"] == 3
    assert body["page"] == 1
    first = body["results"][0]
    assert first["user_id"] == BOB
    assert "age" in first["breakdown"]
    assert "same_city" in first["common_factors"]
    assert first["match_quality"] in {"excellent", "very_good", "good", "fair", "poor"}


def test_mutual_like_flow(monkeypatch):
    client, facade = _client(monkeypatch)
    first = client.post(f"/matches/{ALICE}/like", headers=_headers(BOB))
    assert first.status_code == 200
    assert first.json()["is_new_mutual_match"] is False
    assert first.json()["remaining"] == 19

    second = client.post(f"/matches/{BOB}/like", headers=_headers(ALICE))
    body = second.json()
    assert second.status_code == 200
    assert body["is_new_mutual_match"] is True
    assert body["matched_at"] is not None
    assert body["my_action"] == "liked" and body["their_action"] == "liked"

    mutual = client.get("/matches/mutual", headers=_headers(ALICE)).json()
    assert [row["user_id"] for row in mutual] == [BOB]
    assert len(facade.events.of_type("match_found")) == 2


def test_super_like_quota_maps_to_429(monkeypatch):
    client, _ = _client(monkeypatch, super_like_limit=1)
    assert client.post(f"/matches/{BOB}/super-like", headers=_headers(ALICE)).status_code == 200
    res = client.post(f"/matches/{CARA}/super-like", headers=_headers(ALICE))
    assert res.status_code == 429
    assert int(res.headers["Retry-After"]) >= 1
    detail = res.json()["detail"]
    assert detail["code"] == "quota_exceeded"
    assert detail["remaining"] == 0
    assert detail["limit"] == 1


def test_blocked_pair_maps_to_403_and_unblock_restores(monkeypatch):
    client, _ = _client(monkeypatch)
    assert client.post(f"/matches/{ALICE}/block", headers=_headers(BOB)).status_code == 200
    res = client.post(f"/matches/{BOB}/like", headers=_headers(ALICE))
    assert res.status_code == 403
    assert res.json()["detail"]["code"] == "blocked"

    assert client.post(f"/matches/{ALICE}/unblock", headers=_headers(BOB)).json()["transitioned"] is True
    assert client.post(f"/matches/{BOB}/like", headers=_headers(ALICE)).status_code == 200


def test_invalid_actions_map_to_400(monkeypatch):
    client, _ = _client(monkeypatch)
    assert client.post(f"/matches/{ALICE}/like", headers=_headers(ALICE)).status_code == 400
    assert client.post("/matches/nope/like", headers=_headers(ALICE)).status_code == 400

    client.post(f"/matches/{BOB}/like", headers=_headers(ALICE))
    client.post(f"/matches/{ALICE}/like", headers=_headers(BOB))
    assert client.post(f"/matches/{BOB}/dislike", headers=_headers(ALICE)).status_code == 400
    unmatched = client.post(f"/matches/{BOB}/unmatch", headers=_headers(ALICE)).json()
    assert unmatched["matched_at"] is None and unmatched["my_action"] == "disliked"


def test_likes_received_is_premium_only(monkeypatch):
    client, _ = _client(monkeypatch)
    client.post(f"/matches/{CARA}/like", headers=_headers(ALICE))
    client.post(f"/matches/{BOB}/like", headers=_headers(ALICE))

    assert client.get("/matches/likes-received", headers=_headers(BOB)).status_code == 403
    res = client.get("/matches/likes-received", headers=_headers(CARA))
    assert res.status_code == 200
    assert [row["user_id"] for row in res.json()] == [ALICE]
    assert res.json()[0]["action"] == "liked"


def test_daily_batch_is_stable_for_a_date(monkeypatch):
    client, facade = _client(monkeypatch)
    first = client.get("/matches/daily", headers=_headers(ALICE), params={"date": "2026-03-02"})
    assert first.status_code == 200
    assert first.json()["batch_date"] == "2026-03-02"
    assert [e["candidate_id"] for e in first.json()["entries"]][0] == BOB

    facade.profiles.remove_profile(BOB)
    second = client.get("/matches/daily", headers=_headers(ALICE), params={"date": "2026-03-02"})
    assert second.json() == first.json()


def test_stats(monkeypatch):
    client, _ = _client(monkeypatch)
    client.post(f"/matches/{BOB}/like", headers=_headers(ALICE))
    stats = client.get("/matches/stats", headers=_headers(ALICE)).json()
    assert stats["likes_sent"] == 1
    assert stats["response_rate"] == 0.0


def test_like_endpoint_is_rate_limited(monkeypatch):
    client, _ = _client(monkeypatch)
    monkeypatch.setattr(rate_limit, "limiter", SlidingWindowLimiter(clock=lambda: 1000.0))
    for _ in range(60):
        client.post(f"/matches/{BOB}/like", headers=_headers(ALICE))
    res = client.post(f"/matches/{BOB}/like", headers=_headers(ALICE))
    assert res.status_code == 429
    assert res.headers["Retry-After"] == "60"


def test_sliding_window_limiter_frees_slots_after_the_window():
    now = [0.0]
    limiter = SlidingWindowLimiter(clock=lambda: now[0])
    assert limiter.check("k", limit=2, window_seconds=10).remaining == 1
    assert limiter.check("k", limit=2, window_seconds=10).allowed
    blocked = limiter.check("k", limit=2, window_seconds=10)
    assert blocked.allowed is False and blocked.retry_after_seconds == 10
    now[0] = 10.5
    assert limiter.check("k", limit=2, window_seconds=10).allowed
