import pytest

from habitflow.threats import scan_for_threats


@pytest.mark.parametrize("content, code", [
    ('{"name": "<script>alert(1)</script>"}', "XSS_BLOCKED"),
    ('{"name": "javascript:void(0)"}', "XSS_BLOCKED"),
    ('{"name": "x\' OR \'1"}', "SQL_INJECTION_BLOCKED"),
    ('{"name": "1 UNION SELECT password"}', "SQL_INJECTION_BLOCKED"),
    ('{"unit": "../../etc/passwd"}', "PATH_TRAVERSAL_BLOCKED"),
    ('{"name": "$(whoami)"}', "COMMAND_INJECTION_BLOCKED"),
])
def test_scan_detects_threats(content, code):
    threat = scan_for_threats(content)
    assert threat is not None
    assert threat.code == code


def test_scan_allows_plain_habit():
    assert scan_for_threats('{"name": "Read 20 pages", "category": "learning", "goal": 20}') is None


def test_malicious_body_is_rejected(client):
    response = client.post("/api/habits", json={"name": "<script>alert(1)</script>", "category": "health"})

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "Security Violation"
    assert detail["code"] == "XSS_BLOCKED"
    assert client.get("/api/habits").json() == []


def test_malicious_patch_is_rejected(client, make_habit):
    habit = make_habit()
    response = client.patch(f"/api/habits/{habit['id']}", json={"unit": "../../secret"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "PATH_TRAVERSAL_BLOCKED"
