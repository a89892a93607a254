import pytest
from fastapi.testclient import TestClient

from api import create_app


@pytest.fixture
def client(tmp_path):
    with TestClient(create_app(tmp_path / "api.db")) as test_client:
        yield test_client


def lesson(**overrides):
    body = {
        "owner_id": "ana",
        "topic": "Travel",
        "language": "english",
        "proficiency": "A2",
        "vocabulary": [
            {"word": "Passport", "type": "noun", "meaning": "hộ chiếu", "definition": "A travel document."},
            {"word": "luggage", "type": "noun", "meaning": "hành lý"},
        ],
    }
    body.update(overrides)
    return body


def test_root_reports_database(client, tmp_path):
    response = client.get("/")
    assert response.status_code == 200
    assert response.json()["db"].endswith("api.db")


def test_study_flow(client):
    response = client.post("/lessons/vocabulary", json=lesson())
    assert response.status_code == 200
    saved = response.json()
    assert saved["success"] is True
    assert saved["created"] == 2
    assert saved["skipped"] == 0
    assert saved["errors"] is None

    response = client.get("/reviews", params={"owner_id": "ana", "deck_id": saved["deck_id"]})
    assert response.status_code == 200
    due = response.json()
    assert {card["front"] for card in due} == {"Passport", "luggage"}
    assert all(card["review"]["ease_factor"] == 2.5 for card in due)

    card_id = due[0]["id"]
    response = client.post("/reviews", json={"flashcard_id": card_id, "owner_id": "ana", "quality": 5})
    assert response.status_code == 200
    review = response.json()
    assert review["interval"] == 1
    assert review["repetitions"] == 1
    assert review["ease_factor"] == pytest.approx(2.6)

    remaining = client.get("/reviews", params={"owner_id": "ana"}).json()
    assert [card["id"] for card in remaining] == [due[1]["id"]]

    decks = client.get("/decks", params={"owner_id": "ana"}).json()
    assert decks == [
        {
            "id": saved["deck_id"],
            "name": "Travel",
            "description": "English - A2",
            "language": "en",
            "proficiency": "A2",
            "created_at": decks[0]["created_at"],
            "flashcard_count": 2,
            "due_count": 1,
        }
    ]


def test_resubmitting_skips_everything(client):
    client.post("/lessons/vocabulary", json=lesson())
    response = client.post("/lessons/vocabulary", json=lesson(topic="TRAVEL"))
    assert response.json()["created"] == 0
    assert response.json()["skipped"] == 2


def test_oversized_batch_is_rejected(client):
    words = [{"word": f"w{i}", "type": "noun", "meaning": "m"} for i in range(101)]
    response = client.post("/lessons/vocabulary", json=lesson(vocabulary=words))
    assert response.status_code == 400
    assert "cannot exceed" in response.json()["detail"]


def test_unknown_proficiency_is_rejected(client):
    response = client.post("/lessons/vocabulary", json=lesson(proficiency="Z9"))
    assert response.status_code == 422


def test_partial_failures_are_returned_with_success(client):
    words = [{"word": " ", "type": "noun", "meaning": "x"}, {"word": "gate", "type": "noun", "meaning": "cổng"}]
    body = client.post("/lessons/vocabulary", json=lesson(vocabulary=words)).json()
    assert body["success"] is True
    assert body["created"] == 1
    assert body["errors"] == ['Failed to process " ": word is blank']


def test_grading_someone_elses_card_is_not_found(client):
    saved = client.post("/lessons/vocabulary", json=lesson()).json()
    card_id = client.get("/reviews", params={"owner_id": "ana"}).json()[0]["id"]
    response = client.post("/reviews", json={"flashcard_id": card_id, "owner_id": "ben", "quality": 4})
    assert response.status_code == 404
    response = client.get("/reviews", params={"owner_id": "ben", "deck_id": saved["deck_id"]})
    assert response.status_code == 404


def test_quality_out_of_range_is_rejected(client):
    response = client.post("/reviews", json={"flashcard_id": 1, "owner_id": "ana", "quality": 6})
    assert response.status_code == 422
