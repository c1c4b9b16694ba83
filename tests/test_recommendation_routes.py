import httpx
import pytest
from werkzeug.security import generate_password_hash

from conftest import SAMPLE_RESPONSE, scripted_client
from codemaster.models import db, utcnow, User, Challenge, UserSolution


@pytest.fixture
def catalog(app_instance):
    user = User(username="player", password_hash=generate_password_hash("pw"))
    solved = Challenge(name="Rock Paper Scissors", description="<p>Play&nbsp;the game</p>", rank=8,
                       rank_name="8 kyu", points=10)
    solved.set_tags(["Logic"])
    open_one = Challenge(name="FizzBuzz Challenge", description="The classic interview question.", rank=7,
                         rank_name="7 kyu", points=20)
    open_one.set_tags(["Loops", "Logic"])
    locked = Challenge(name="Binary Search Tree", description="BST", rank=5, rank_name="5 kyu",
                       points=50, is_locked=True, required_level=15)
    db.session.add_all([user, solved, open_one, locked])
    db.session.commit()
    return {"user": user, "solved": solved, "open": open_one, "locked": locked}


def install(app, outcomes):
    client, transport, sleeps = scripted_client(outcomes)
    app.extensions["recommendation_client"] = client
    return transport, sleeps


def login(client):
    client.post("/auth/login", json={"username": "player", "password": "pw"})


def mark_solved(user, challenge):
    db.session.add(UserSolution(user_id=user.id, challenge_id=challenge.id, status="completed",
                                passed=True, tests_passed=1, tests_total=1, completed_at=utcnow()))
    db.session.commit()


def test_requires_login(client):
    assert client.get("/recommendations").status_code == 401


def test_no_solved_challenges_falls_back_without_calling_service(app_instance, client, catalog):
    transport, _ = install(app_instance, [SAMPLE_RESPONSE])
    login(client)
    body = client.get("/recommendations").get_json()
    assert body["personalized"] is False
    assert body["recommendations"] == []
    assert [c["name"] for c in body["challenges"]] == ["Rock Paper Scissors", "FizzBuzz Challenge"]
    assert transport.requests == []


def test_personalized_recommendations_are_enriched(app_instance, client, catalog):
    mark_solved(catalog["user"], catalog["solved"])
    transport, _ = install(app_instance, [SAMPLE_RESPONSE])
    login(client)
    body = client.get("/recommendations?top_n=2").get_json()

    assert body["personalized"] is True
    (payload,) = transport.payloads
    assert payload["top_n"] == 2
    assert payload["solved_problems"] == [{
        "name": "Rock Paper Scissors", "rank": 8, "tags": ["Logic"],
        "description": "Play the game", "passed": True,
    }]
    assert [c["name"] for c in payload["candidate_problems"]] == ["FizzBuzz Challenge"]

    first, second = body["recommendations"]
    assert first["challenge_details"]["id"] == catalog["open"].id
    assert first["reason_text"] == "Matches your level • New topic"
    assert second["challenge_details"] is None
    assert second["reason_text"] == ""
    assert body["metadata"]["model_version"] == "4.0"
    assert body["user_profile"]["experience_level"] == "beginner"


def test_service_failure_falls_back(app_instance, client, catalog):
    mark_solved(catalog["user"], catalog["solved"])
    transport, sleeps = install(app_instance, [503])
    login(client)
    body = client.get("/recommendations").get_json()
    assert body["personalized"] is False
    assert [c["name"] for c in body["challenges"]] == ["FizzBuzz Challenge"]
    assert len(transport.requests) == 1
    assert sleeps == []


def test_timeouts_retry_then_fall_back(app_instance, client, catalog):
    mark_solved(catalog["user"], catalog["solved"])
    transport, sleeps = install(app_instance, [httpx.ReadTimeout])
    login(client)
    body = client.get("/recommendations").get_json()
    assert body["personalized"] is False
    assert len(transport.requests) == 3
    assert len(sleeps) == 2


def test_recommendation_data(app_instance, client, catalog):
    mark_solved(catalog["user"], catalog["solved"])
    login(client)
    body = client.get("/recommendations/data").get_json()
    assert [p["name"] for p in body["solved_problems"]] == ["Rock Paper Scissors"]
    assert [p["name"] for p in body["candidate_problems"]] == ["FizzBuzz Challenge"]
    assert body["candidate_problems"][0]["tags"] == ["Loops", "Logic"]
    assert [d["name"] for d in body["challenge_details"]] == ["FizzBuzz Challenge"]
