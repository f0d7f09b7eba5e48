from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from mneme.application.config import AppConfig, resolve_config
from mneme.application.factory import (
    build_session_manager,
    build_session_settings,
    get_study_repository,
)
from mneme.infrastructure.adapters.memory_store import InMemoryStudyRepository
from mneme.infrastructure.adapters.sqlite_store import SqliteStudyRepository


def test_defaults(mock_home):
    config = resolve_config()
    assert config.backend == "sqlite"
    assert config.database_path == mock_home / ".config/mneme/mneme.db"
    assert config.new_card_limit == 20
    assert config.due_card_limit == 50
    assert config.due_repetition_tiers is None
    assert config.requeue_offset == 10
    assert config.stale_session_hours == 12


def test_env_overrides(mock_home, monkeypatch):
    monkeypatch.setenv("MNEME_BACKEND", "memory")
    monkeypatch.setenv("MNEME_NEW_CARD_LIMIT", "5")
    monkeypatch.setenv("MNEME_DUE_REPETITION_TIERS", "1,2,3")

    config = resolve_config()

    assert config.backend == "memory"
    assert config.new_card_limit == 5
    assert config.due_repetition_tiers == [1, 2, 3]


def test_toml_file(mock_home, monkeypatch):
    cfg_dir = mock_home / ".config/mneme"
    cfg_dir.mkdir(parents=True)
    (cfg_dir / "config.toml").write_text('requeue_offset = 4\ndatabase_path = "~/cards.db"\n')

    config = resolve_config()

    assert config.requeue_offset == 4
    assert config.database_path == mock_home / "cards.db"


def test_precedence_cli_over_env_over_file(mock_home, monkeypatch):
    cfg_dir = mock_home / ".config/mneme"
    cfg_dir.mkdir(parents=True)
    (cfg_dir / "config.toml").write_text('backend = "memory"\ndue_card_limit = 7\n')
    monkeypatch.setenv("MNEME_DUE_CARD_LIMIT", "9")

    config = resolve_config({"due_card_limit": 11, "backend": None})

    assert config.due_card_limit == 11
    assert config.backend == "memory"


@pytest.mark.parametrize(
    "field, value",
    [
        ("new_card_limit", 0),
        ("due_card_limit", -1),
        ("requeue_offset", 0),
        ("stale_session_hours", 0),
        ("backend", "postgres"),
    ],
)
def test_invalid_values_rejected(mock_home, field, value):
    with pytest.raises(PydanticValidationError):
        AppConfig(**{field: value})


def test_factory_selects_backend(mock_home, tmp_path):
    assert isinstance(get_study_repository(AppConfig(backend="memory")), InMemoryStudyRepository)

    repo = get_study_repository(AppConfig(database_path=tmp_path / "x.db"))
    assert isinstance(repo, SqliteStudyRepository)
    assert repo.database_path == Path(tmp_path / "x.db")


def test_session_settings_from_config(mock_home):
    config = AppConfig(
        backend="memory",
        new_card_limit=3,
        due_repetition_tiers=[1, 2, 3],
        requeue_offset=5,
        stale_session_hours=2,
    )
    settings = build_session_settings(config)
    assert settings.criteria.new_limit == 3
    assert settings.criteria.repetition_tiers == (1, 2, 3)
    assert settings.requeue_offset == 5

    manager = build_session_manager(config)
    assert manager.settings.stale_session_hours == 2
