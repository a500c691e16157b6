import logging
import os
import time
from pathlib import Path

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from .config import PAIR_LOCK_TIMEOUT_SECONDS, load_matching_config
from .database import SessionLocal
from .routes import include_modular_routers
from .services.daily_batch import DailyBatchGenerator, SqlDailyBatchStore
from .services.events import SqlConversationBootstrap, SqlEventSink
from .services.facade import MatchFacade
from .services.match_store import SqlMatchStateStore
from .services.profiles import SqlProfileSource
from .services.quota import QuotaEnforcer, SqlQuotaCounter
from .services.ranking import CandidateRanker
from .services.scoring import CompatibilityScorer

logger = logging.getLogger(__name__)

app = FastAPI(title="Matrimony Match Engine")
include_modular_routers(app)

ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.getenv("ALLOWED_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def run_migrations() -> None:
    env_dir = os.getenv("MIGRATIONS_DIR", "").strip()
    docker_dir = Path("/app/migrations")
    local_dir = Path(__file__).resolve().parents[1] / "migrations"

    if env_dir:
        migrations_dir = Path(env_dir)
    elif docker_dir.exists():
        migrations_dir = docker_dir
    else:
        migrations_dir = local_dir

    if not migrations_dir.exists() or not migrations_dir.is_dir():
        raise FileNotFoundError(
            "Migrations directory not found. Checked: "
            f"MIGRATIONS_DIR={env_dir or '<unset>'}, {docker_dir}, {local_dir}"
        )

    files = sorted([f.name for f in migrations_dir.iterdir() if f.is_file() and f.suffix == ".sql"])
    with SessionLocal() as db:
        for fname in files:
            db.execute(text((migrations_dir / fname).read_text(encoding="utf-8")))
            logger.info("applied migration %s", fname)
        db.commit()


def wait_for_db(max_attempts: int = 20, delay_seconds: float = 1.5) -> None:
    last_err: Exception | None = None
    for _ in range(max_attempts):
        try:
            with SessionLocal() as db:
                db.execute(text("SELECT 1"))
                db.commit()
            return
        except OperationalError as exc:
            last_err = exc
            time.sleep(delay_seconds)
    if last_err:
        raise last_err


def build_match_facade(session_factory=SessionLocal) -> MatchFacade:
    """Wire the engine against the shared SQL stores."""
    config = load_matching_config()
    profiles = SqlProfileSource(session_factory)
    match_store = SqlMatchStateStore(session_factory, lock_timeout_seconds=PAIR_LOCK_TIMEOUT_SECONDS)
    scorer = CompatibilityScorer(config)
    return MatchFacade(
        profiles,
        match_store=match_store,
        quota=QuotaEnforcer(SqlQuotaCounter(session_factory), config),
        batch_generator=DailyBatchGenerator(
            profiles,
            match_store,
            SqlDailyBatchStore(session_factory),
            ranker=CandidateRanker(scorer),
            config=config,
        ),
        events=SqlEventSink(session_factory),
        conversations=SqlConversationBootstrap(session_factory),
        config=config,
        scorer=scorer,
    )


@app.on_event("startup")
def on_startup() -> None:
    if getattr(app.state, "match_facade", None) is not None:
        return
    wait_for_db()
    run_migrations()
    app.state.match_facade = build_match_facade()


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}
