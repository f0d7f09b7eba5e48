import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from mneme.application.config import AppConfig
from mneme.application.factory import build_session_settings
from mneme.application.review_service import ReviewService
from mneme.application.study.session_manager import StudySessionManager
from mneme.consts import VERSION
from mneme.server import Services, app, get_services


@pytest.fixture
def services(repo, clock, mock_home):
    config = AppConfig(backend="memory", default_user_id=1)
    return Services(
        config=config,
        repo=repo,
        sessions=StudySessionManager(repo, settings=build_session_settings(config), clock=clock),
        reviews=ReviewService(repo, clock=clock),
    )


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def seeded(repo, card_factory):
    async def seed():
        spanish = await repo.add_deck(1, 1, "Spanish")
        verbs = await repo.add_deck(1, 1, "Verbs", parent_deck_id=spanish.id)
        await repo.add_deck(1, 1, "Irregular", parent_deck_id=verbs.id)
        french = await repo.add_deck(1, 1, "French")
        return {"spanish": spanish, "verbs": verbs, "french": french}

    decks = asyncio.run(seed())
    for i in (1, 2):
        repo.put_card(card_factory(i, decks["spanish"].id))
    repo.put_card(card_factory(3, decks["verbs"].id, reps=1, interval=1))
    return decks


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION


def test_get_version(client):
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


def test_get_study_session(client, seeded):
    response = client.get(f"/decks/{seeded['spanish'].id}/study")

    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "in_progress"
    assert data["session"]["id"].startswith("ses_")
    assert [c["id"] for c in data["new_cards"]] == [1, 2]
    assert [c["id"] for c in data["due_cards"]] == [3]
    assert data["total_cards"] == 3
    assert data["current_card"]["id"] == 1


def test_nothing_to_study(client, seeded):
    response = client.get(f"/decks/{seeded['french'].id}/study")
    assert response.status_code == 200
    assert response.json()["state"] == "nothing_to_study"
    assert response.json()["session"] is None


def test_unknown_deck_is_404(client, seeded):
    assert client.get("/decks/999/study").status_code == 404


def test_other_user_header(client, seeded):
    response = client.get(f"/decks/{seeded['spanish'].id}/study", headers={"X-User-Id": "2"})
    assert response.status_code == 404


def test_submit_review_flow(client, seeded):
    deck_id = seeded["spanish"].id
    client.get(f"/decks/{deck_id}/study")

    response = client.post(
        f"/decks/{deck_id}/study",
        json={"card_id": 1, "rating": 1, "time_taken_ms": 2000, "expected_position": 0},
    )
    assert response.status_code == 200
    data = response.json()
    assert data["updated_card"]["interval"] == 0
    progress = data["session_progress"]
    assert progress["requeued"] is True
    assert progress["cards_reviewed"] == 0
    assert progress["next_card"]["id"] == 2
    assert progress["state"] == "in_progress"

    response = client.post(f"/decks/{deck_id}/study", json={"card_id": 2, "rating": 3})
    assert response.json()["session_progress"]["cards_reviewed"] == 1


def test_submit_wrong_card_is_409(client, seeded):
    deck_id = seeded["spanish"].id
    client.get(f"/decks/{deck_id}/study")

    response = client.post(f"/decks/{deck_id}/study", json={"card_id": 2, "rating": 3})
    assert response.status_code == 409


@pytest.mark.parametrize("body", [{"card_id": 1, "rating": 9}, {"card_id": 1, "rating": 0}])
def test_submit_invalid_rating_is_400(client, seeded, body):
    deck_id = seeded["spanish"].id
    client.get(f"/decks/{deck_id}/study")
    assert client.post(f"/decks/{deck_id}/study", json=body).status_code == 400


@pytest.mark.parametrize(
    "body", [{"rating": 3}, {"card_id": 1}, {"card_id": "one", "rating": 3}]
)
def test_submit_malformed_body_is_400(client, seeded, body):
    deck_id = seeded["spanish"].id
    client.get(f"/decks/{deck_id}/study")

    response = client.post(f"/decks/{deck_id}/study", json=body)

    assert response.status_code == 400
    assert response.json()["detail"].startswith("Invalid request: ")


def test_review_missing_quality_is_400(client, seeded):
    response = client.post("/flashcards/review", json={"card_id": 1})
    assert response.status_code == 400
    assert "quality" in response.json()["detail"]


def test_submit_without_session_is_404(client, seeded):
    response = client.post(f"/decks/{seeded['spanish'].id}/study", json={"card_id": 1, "rating": 3})
    assert response.status_code == 404


def test_storage_failure_is_503(client, services, seeded):
    deck_id = seeded["spanish"].id
    client.get(f"/decks/{deck_id}/study")

    with patch.object(services.repo, "save_review", AsyncMock(side_effect=RuntimeError("io"))):
        response = client.post(f"/decks/{deck_id}/study", json={"card_id": 1, "rating": 3})

    assert response.status_code == 503
    assert response.headers["Retry-After"] == "1"


def test_abandon_session(client, seeded):
    deck_id = seeded["spanish"].id
    session_id = client.get(f"/decks/{deck_id}/study").json()["session"]["id"]

    response = client.delete(f"/decks/{deck_id}/study")
    assert response.status_code == 200
    assert response.json()["session"]["id"] == session_id
    assert response.json()["session"]["is_active"] is False

    assert client.delete(f"/decks/{deck_id}/study").json() == {"session": None}


def test_standalone_review(client, seeded):
    response = client.post("/flashcards/review", json={"card_id": 1, "quality": 5})
    assert response.status_code == 200
    card = response.json()["updated_card"]
    assert card["interval"] == 1
    assert card["ease_factor"] == 260
    assert card["repetitions"] == 1


def test_standalone_review_errors(client, seeded):
    assert client.post("/flashcards/review", json={"card_id": 1, "quality": 6}).status_code == 400
    assert client.post("/flashcards/review", json={"card_id": 77, "quality": 3}).status_code == 404


def test_category_deck_tree(client, seeded):
    response = client.get("/categories/1/decks")
    assert response.status_code == 200
    decks = response.json()["decks"]
    assert [d["name"] for d in decks] == ["Spanish", "French"]
    assert decks[0]["subdecks"][0]["name"] == "Verbs"
    assert decks[0]["subdecks"][0]["subdecks"][0]["name"] == "Irregular"
