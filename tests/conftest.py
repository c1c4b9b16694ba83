import json
import os
import tempfile

import httpx
import pytest

from config import TestConfig
from codemaster import create_app
from codemaster.models import db
from codemaster.recommendations import RecommendationClient


SAMPLE_RESPONSE = {
    "recommendations": [
        {
            "name": "FizzBuzz Challenge",
            "rank": 7,
            "rank_name": "7 kyu",
            "score": 0.91,
            "topic": "Loops",
            "description": "The classic interview question",
            "reasons": ["Matches your level", "New topic"],
            "details": {
                "difficulty_score": 0.9,
                "topic_score": 0.8,
                "learning_score": 0.7,
                "semantic_score": 0.6,
                "progression_score": 0.5,
                "target_difficulty": 7.2,
            },
        },
        {
            "name": "Ghost Kata",
            "rank": 6,
            "rank_name": "6 kyu",
            "score": 0.42,
            "topic": "Strings",
            "description": "",
            "reasons": [],
            "details": {},
        },
    ],
    "user_profile": {
        "avg_difficulty": 7.5,
        "success_rate": 1.0,
        "experience_level": "beginner",
        "total_solved": 1,
        "top_topics": ["Logic"],
    },
    "metadata": {
        "model_version": "4.0",
        "timestamp": "2025-01-01T00:00:00Z",
        "processing_time_ms": 120,
        "n_candidates": 2,
        "n_recommendations": 2,
        "semantic_similarity_enabled": True,
    },
}


class ScriptedTransport:
    """Plays back a list of outcomes (exceptions or responses), one per request."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, type) and issubclass(outcome, Exception):
            raise outcome("scripted failure", request=request)
        if isinstance(outcome, int):
            return httpx.Response(outcome, text="upstream error")
        return httpx.Response(200, json=outcome)

    @property
    def payloads(self):
        return [json.loads(r.content) for r in self.requests]


def scripted_client(outcomes, sleeps=None, **kwargs):
    transport = ScriptedTransport(outcomes)
    sleeps = sleeps if sleeps is not None else []
    client = RecommendationClient(
        "http://recommender.test/recommend",
        transport=httpx.MockTransport(transport),
        sleep=sleeps.append,
        **kwargs,
    )
    return client, transport, sleeps


@pytest.fixture
def app_instance():
    db_fd, db_path = tempfile.mkstemp()
    app = create_app(TestConfig, {"SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}"})
    ctx = app.app_context()
    ctx.push()
    try:
        yield app
    finally:
        db.session.remove()
        db.drop_all()
        ctx.pop()
        os.close(db_fd)
        os.unlink(db_path)


@pytest.fixture
def client(app_instance):
    return app_instance.test_client()
