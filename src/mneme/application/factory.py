"""
Storage Factory
Centralizes the logic for selecting the storage adapter and wiring services.
"""

import logging

from mneme.application.config import AppConfig
from mneme.application.review_service import ReviewService
from mneme.application.study.queue_builder import CandidateCriteria
from mneme.application.study.session_manager import SessionSettings, StudySessionManager
from mneme.domain.study.ports import StudyRepository
from mneme.infrastructure.adapters.memory_store import InMemoryStudyRepository
from mneme.infrastructure.adapters.sqlite_store import SqliteStudyRepository

logger = logging.getLogger(__name__)


def get_study_repository(config: AppConfig) -> StudyRepository:
    """
    Returns the StudyRepository implementation selected by config.backend.
    """
    if config.backend == "memory":
        logger.info("Storage: in-memory (nothing is persisted)")
        return InMemoryStudyRepository()

    logger.info(f"Storage: SQLite at {config.database_path}")
    return SqliteStudyRepository(config.database_path)


def build_session_settings(config: AppConfig) -> SessionSettings:
    tiers = tuple(config.due_repetition_tiers) if config.due_repetition_tiers else None
    return SessionSettings(
        criteria=CandidateCriteria(
            new_limit=config.new_card_limit,
            due_limit=config.due_card_limit,
            repetition_tiers=tiers,
        ),
        requeue_offset=config.requeue_offset,
        stale_session_hours=config.stale_session_hours,
    )


def build_session_manager(
    config: AppConfig, repo: StudyRepository | None = None
) -> StudySessionManager:
    return StudySessionManager(
        repo or get_study_repository(config),
        settings=build_session_settings(config),
    )


def build_review_service(
    config: AppConfig, repo: StudyRepository | None = None
) -> ReviewService:
    return ReviewService(repo or get_study_repository(config))
