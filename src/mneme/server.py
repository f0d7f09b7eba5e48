import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from mneme.application.config import AppConfig, resolve_config
from mneme.application.factory import (
    build_review_service,
    build_session_manager,
    get_study_repository,
)
from mneme.application.review_service import ReviewService
from mneme.application.study.deck_tree import build_deck_tree
from mneme.application.study.session_manager import SessionSnapshot, StudySessionManager
from mneme.consts import VERSION
from mneme.domain.errors import (
    ConflictError,
    MnemeError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from mneme.domain.study.models import Flashcard, StudySession
from mneme.domain.study.ports import StudyRepository

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("mneme.server")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"mneme server v{VERSION} starting up...")
    yield
    # Shutdown
    logger.info("mneme server shutting down...")


app = FastAPI(
    title="mneme",
    description="Spaced-repetition scheduling and study session API.",
    version=VERSION,
    lifespan=lifespan,
)

start_time = time.time()


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


@dataclass
class Services:
    config: AppConfig
    repo: StudyRepository
    sessions: StudySessionManager
    reviews: ReviewService


@lru_cache(maxsize=1)
def get_services() -> Services:
    """Build the process-wide services once from the resolved config."""
    config = resolve_config()
    repo = get_study_repository(config)
    return Services(
        config=config,
        repo=repo,
        sessions=build_session_manager(config, repo),
        reviews=build_review_service(config, repo),
    )


ServicesDep = Annotated[Services, Depends(get_services)]


def get_user_id(
    services: ServicesDep,
    x_user_id: Annotated[int | None, Header()] = None,
) -> int:
    # Authentication lives outside this service; the caller names the user.
    return x_user_id if x_user_id is not None else services.config.default_user_id


UserDep = Annotated[int, Depends(get_user_id)]

_STATUS_CODES: dict[type[MnemeError], int] = {
    ValidationError: 400,
    NotFoundError: 404,
    ConflictError: 409,
    StorageError: 503,
}


def _http_error(e: MnemeError) -> HTTPException:
    status = next(
        (code for cls, code in _STATUS_CODES.items() if isinstance(e, cls)), 500
    )
    headers = {"Retry-After": "1"} if isinstance(e, StorageError) else None
    if status >= 500:
        logger.error(f"Request failed: {e}")
    return HTTPException(status_code=status, detail=str(e), headers=headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Request-shape errors answer 400, the same as ValidationError.
    errors = exc.errors()
    fields = [".".join(str(p) for p in err["loc"] if p != "body") for err in errors]
    detail = "Invalid request: " + ", ".join(f or "body" for f in fields)
    logger.debug(f"Rejected request to {request.url.path}: {errors}")
    return JSONResponse(status_code=400, content={"detail": detail})


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class CardModel(BaseModel):
    id: int
    deck_id: int
    front: str
    back: str
    interval: int
    ease_factor: int
    repetitions: int
    next_review_at: datetime | None

    @classmethod
    def from_card(cls, card: Flashcard) -> "CardModel":
        return cls(
            id=card.id,
            deck_id=card.deck_id,
            front=card.front,
            back=card.back,
            interval=card.schedule.interval,
            ease_factor=card.schedule.ease_factor,
            repetitions=card.schedule.repetitions,
            next_review_at=card.schedule.next_review_at,
        )


class SessionModel(BaseModel):
    id: str
    deck_id: int
    cards_total: int
    cards_reviewed: int
    is_active: bool
    started_at: datetime | None
    completed_at: datetime | None

    @classmethod
    def from_session(cls, session: StudySession) -> "SessionModel":
        return cls(
            id=session.id,
            deck_id=session.deck_id,
            cards_total=session.cards_total,
            cards_reviewed=session.cards_reviewed,
            is_active=session.is_active,
            started_at=session.started_at,
            completed_at=session.completed_at,
        )


class StudySessionResponse(BaseModel):
    state: str
    session: SessionModel | None
    new_cards: list[CardModel]
    due_cards: list[CardModel]
    total_cards: int
    current_card: CardModel | None
    position: int
    remaining: int

    @classmethod
    def from_snapshot(cls, snap: SessionSnapshot) -> "StudySessionResponse":
        return cls(
            state=snap.state.value,
            session=SessionModel.from_session(snap.session) if snap.session else None,
            new_cards=[CardModel.from_card(c) for c in snap.new_cards],
            due_cards=[CardModel.from_card(c) for c in snap.due_cards],
            total_cards=snap.total_cards,
            current_card=CardModel.from_card(snap.current_card) if snap.current_card else None,
            position=snap.position,
            remaining=snap.remaining,
        )


class StudyReviewRequest(BaseModel):
    card_id: int
    rating: int  # 1=Again, 2=Hard, 3=Good, 4=Easy
    time_taken_ms: int | None = None
    expected_position: int | None = None


class SessionProgress(BaseModel):
    session_id: str
    state: str
    cards_total: int
    cards_reviewed: int
    position: int
    remaining: int
    requeued: bool
    completed: bool
    next_card: CardModel | None


class StudyReviewResponse(BaseModel):
    updated_card: CardModel
    session_progress: SessionProgress


class StandaloneReviewRequest(BaseModel):
    card_id: int
    quality: int  # 0-5 (SM-2 quality score)
    time_taken_ms: int | None = None


class StandaloneReviewResponse(BaseModel):
    updated_card: CardModel


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


@app.get("/decks/{deck_id}/study", response_model=StudySessionResponse)
async def get_study_session(deck_id: int, services: ServicesDep, user_id: UserDep):
    """
    Return the active study session for a deck and its subdecks, starting one
    if none is active and cards are available.
    """
    try:
        snap = await services.sessions.get_or_start(user_id, deck_id)
    except MnemeError as e:
        raise _http_error(e) from e
    return StudySessionResponse.from_snapshot(snap)


@app.post("/decks/{deck_id}/study", response_model=StudyReviewResponse)
async def submit_study_review(
    deck_id: int, req: StudyReviewRequest, services: ServicesDep, user_id: UserDep
):
    """Rate the current card of the deck's active session."""
    try:
        outcome = await services.sessions.submit_rating(
            user_id,
            deck_id,
            req.card_id,
            req.rating,
            time_taken_ms=req.time_taken_ms,
            expected_position=req.expected_position,
        )
    except MnemeError as e:
        raise _http_error(e) from e

    session = outcome.session
    return StudyReviewResponse(
        updated_card=CardModel.from_card(outcome.card),
        session_progress=SessionProgress(
            session_id=session.id,
            state=outcome.state.value,
            cards_total=session.cards_total,
            cards_reviewed=session.cards_reviewed,
            position=outcome.position,
            remaining=outcome.remaining,
            requeued=outcome.requeued,
            completed=outcome.completed,
            next_card=CardModel.from_card(outcome.next_card) if outcome.next_card else None,
        ),
    )


@app.delete("/decks/{deck_id}/study")
async def abandon_study_session(deck_id: int, services: ServicesDep, user_id: UserDep):
    """Close the deck's active session without completing it."""
    try:
        closed = await services.sessions.abandon(user_id, deck_id)
    except MnemeError as e:
        raise _http_error(e) from e
    return {"session": SessionModel.from_session(closed) if closed else None}


@app.post("/flashcards/review", response_model=StandaloneReviewResponse)
async def review_flashcard(
    req: StandaloneReviewRequest, services: ServicesDep, user_id: UserDep
):
    """Review one card outside any study session (0-5 quality)."""
    try:
        card = await services.reviews.review_card(
            req.card_id, req.quality, user_id=user_id, time_taken_ms=req.time_taken_ms
        )
    except MnemeError as e:
        raise _http_error(e) from e
    return StandaloneReviewResponse(updated_card=CardModel.from_card(card))


@app.get("/categories/{category_id}/decks")
async def list_category_decks(category_id: int, services: ServicesDep, user_id: UserDep):
    """All decks of a category, nested under their parents."""
    try:
        decks = await services.repo.list_decks(user_id, category_id)
    except MnemeError as e:
        raise _http_error(e) from e
    except Exception as e:
        logger.error(f"Deck listing failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e)) from e
    return {"decks": [node.to_dict() for node in build_deck_tree(decks)]}
