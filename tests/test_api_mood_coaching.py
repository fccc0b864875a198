from habitflow.backend.coaching import DEFAULT_TIP, FALLBACK_ADVICE, FALLBACK_CHAT_REPLY, CoachingService
from habitflow.backend.main import app, get_coach


class StubCoach(CoachingService):
    def __init__(self):
        super().__init__(api_key=None)
        self.prompts = []

    async def generate(self, system_prompt, user_prompt, max_tokens):
        self.prompts.append(user_prompt)
        return f"reply to: {user_prompt[:20]}"


def test_save_mood_creates_then_updates(client):
    response = client.post("/api/mood", json={"mood": 4, "energy": 3, "notes": "Good day"})
    assert response.status_code == 201
    entry = response.json()
    assert entry["date"] == "2024-03-15"
    assert entry["mood"] == 4

    response = client.post("/api/mood", json={"mood": 2, "energy": 2})
    assert response.status_code == 200
    assert response.json()["id"] == entry["id"]
    assert response.json()["notes"] is None

    assert len(client.get("/api/mood").json()) == 1


def test_mood_validation(client):
    assert client.post("/api/mood", json={"mood": 6, "energy": 3}).status_code == 400
    assert client.post("/api/mood", json={"mood": 3}).status_code == 400


def test_recent_mood_and_by_date(client, clock):
    for mood in (1, 2, 3):
        client.post("/api/mood", json={"mood": mood, "energy": 3})
        clock.advance()

    recent = client.get("/api/mood/recent").json()
    assert [entry["date"] for entry in recent] == ["2024-03-17", "2024-03-16", "2024-03-15"]

    assert client.get("/api/mood/2024-03-16").json()["mood"] == 2
    assert client.get("/api/mood/2024-01-01").json() is None


def test_coaching_uses_fallbacks_without_api_key(client, make_habit):
    make_habit()

    assert client.get("/api/coaching/latest").json() == {"tip": DEFAULT_TIP}

    advice = client.post("/api/coaching/advice").json()
    assert advice == {"advice": FALLBACK_ADVICE}
    assert client.get("/api/coaching/latest").json() == {"tip": FALLBACK_ADVICE}

    reply = client.post("/api/coaching/chat", json={"message": "How do I stay motivated?"}).json()
    assert reply == {"response": FALLBACK_CHAT_REPLY}


def test_chat_requires_message(client):
    assert client.post("/api/coaching/chat", json={"message": "   "}).status_code == 400
    assert client.post("/api/coaching/chat", json={}).status_code == 400


def test_chat_history_is_stored(client):
    coach = StubCoach()
    app.dependency_overrides[get_coach] = lambda: coach

    client.post("/api/coaching/chat", json={"message": "first question"})
    client.post("/api/coaching/chat", json={"message": "second question"})

    history = client.get("/api/coaching/chat").json()
    assert [item["message"] for item in history] == ["first question", "second question"]
    assert history[0]["response"] == "reply to: first question"
    assert coach.prompts == ["first question", "second question"]


def test_advice_prompt_includes_habits(client, make_habit):
    coach = StubCoach()
    app.dependency_overrides[get_coach] = lambda: coach
    make_habit("Stretch", "fitness")

    advice = client.post("/api/coaching/advice").json()["advice"]

    assert advice.startswith("reply to: ")
    assert "Stretch" in coach.prompts[0]
    assert "0/1" in coach.prompts[0]
