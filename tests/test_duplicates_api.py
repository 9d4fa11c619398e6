import pytest

from platforms.dto import PlatformEntry


@pytest.fixture
def seeded(store, make_entry):
    store.insert_records(
        [
            make_entry("c1", "Celeste", "Steam", playtime_hours=3.0),
            make_entry("c2", "Celeste", "Switch", playtime_hours=1.5),
            make_entry("p1", "Portal 2", "Steam"),
            make_entry("p2", "Portal 2", "PS3"),
        ]
    )
    return store


def test_requires_login(client, seeded):
    response = client.post("/api/duplicates/scan")

    assert response.status_code == 401
    assert response.get_json()["error"] == "Not authenticated."


def test_full_review_flow(logged_in_client, seeded):
    client = logged_in_client

    response = client.post("/api/duplicates/scan")
    assert response.status_code == 200
    session = response.get_json()
    assert session["phase"] == "reviewing"
    assert [group["key"] for group in session["groups"]] == ["celeste", "portal 2"]

    response = client.post("/api/duplicates/decide", json={"action_type": "keep_one", "keep_id": "c1"})
    assert response.status_code == 200
    assert response.get_json()["session"]["current_index"] == 1

    response = client.post("/api/duplicates/decide", json={"group_index": 1, "action_type": "keep_all"})
    assert response.get_json()["session"]["phase"] == "summary"

    summary = client.get("/api/duplicates/summary").get_json()
    assert summary["counts"]["keep_one"] == 1
    assert summary["counts"]["keep_all"] == 1
    assert summary["counts"]["merge"] == 0
    assert summary["actions"]["keep_one"][0]["keep_id"] == "c1"

    response = client.post("/api/duplicates/execute")
    assert response.status_code == 200
    result = response.get_json()
    assert result["success_count"] == 2
    assert result["failed_count"] == 0

    assert [entry.id for entry in seeded.library_snapshot()] == ["c1", "p1", "p2"]
    (kept,) = seeded.fetch_records(["c1"])
    assert kept.playtime_hours == 4.5
    assert seeded.dismissed_keys() == {"portal 2"}

    response = client.post("/api/duplicates/reset", json={"rescan": True})
    assert response.status_code == 200
    assert response.get_json()["phase"] == "complete"
    assert response.get_json()["total_groups"] == 0


def test_invalid_decision_is_bad_request(logged_in_client, seeded):
    logged_in_client.post("/api/duplicates/scan")

    response = logged_in_client.post(
        "/api/duplicates/decide", json={"action_type": "keep_one", "keep_id": "p1"}
    )

    assert response.status_code == 400
    assert response.get_json()["kind"] == "InvalidDecisionError"


def test_wrong_phase_is_conflict(logged_in_client, seeded):
    response = logged_in_client.post("/api/duplicates/navigate", json={"direction": "next"})
    assert response.status_code == 409

    logged_in_client.post("/api/duplicates/scan")
    response = logged_in_client.post("/api/duplicates/execute")
    assert response.status_code == 409
    assert response.get_json()["phase"] == "reviewing"


def test_navigation_and_action_edits(logged_in_client, seeded):
    client = logged_in_client
    client.post("/api/duplicates/scan")

    response = client.post("/api/duplicates/navigate", json={"direction": "go_to", "index": 1})
    assert response.get_json()["current_index"] == 1
    response = client.post("/api/duplicates/navigate", json={"direction": "sideways"})
    assert response.status_code == 400

    client.post("/api/duplicates/decide", json={"group_index": 0, "action_type": "skip"})
    client.post("/api/duplicates/decide", json={"group_index": 1, "action_type": "keep_all"})

    response = client.patch("/api/duplicates/actions/1", json={"action_type": "merge"})
    assert response.status_code == 200
    assert response.get_json()["action"]["action_type"] == "merge"

    response = client.delete("/api/duplicates/actions/0")
    assert response.get_json()["removed"]["action_type"] == "skip"
    assert client.delete("/api/duplicates/actions/0").status_code == 400

    response = client.post("/api/duplicates/actions/0/review")
    assert response.get_json()["phase"] == "reviewing"
    assert response.get_json()["current_index"] == 0


def test_dismissed_endpoints(logged_in_client, seeded):
    seeded.upsert_dismissal("portal 2", ["p1", "p2"])
    client = logged_in_client

    listed = client.get("/api/duplicates/dismissed").get_json()["dismissed"]
    assert [item["key"] for item in listed] == ["portal 2"]

    session = client.post("/api/duplicates/scan").get_json()
    assert [group["key"] for group in session["groups"]] == ["celeste"]

    assert client.delete("/api/duplicates/dismissed/portal%202").status_code == 200
    assert client.delete("/api/duplicates/dismissed/portal%202").status_code == 404
    assert client.delete("/api/duplicates/dismissed").get_json() == {"cleared": 0}


def test_platform_match_and_scan(logged_in_client, seeded, platform_libraries):
    platform_libraries["steam"] = [
        PlatformEntry("steam", "504230", "Celeste", playtime_hours=6.0, platform_label="Steam"),
        PlatformEntry("steam", "620", "Portal 2", platform_label="Steam"),
    ]

    response = logged_in_client.post(
        "/api/platforms/match", json={"title": "Celeste", "platform": "Steam"}
    )
    assert response.status_code == 200
    body = response.get_json()
    assert body["platform"] == "steam"
    assert [match["platform_id"] for match in body["matches"]] == ["504230"]

    response = logged_in_client.post(
        "/api/platforms/match", json={"title": "Celeste", "platform": "psn"}
    )
    assert response.status_code == 400

    response = logged_in_client.post("/api/platforms/scan", json={"title": "Portal 2"})
    body = response.get_json()
    assert body["scanned_platforms"] == ["Steam"]
    assert [match["platform_id"] for match in body["matches"]] == ["620"]


def test_platform_match_requires_title(logged_in_client, seeded):
    response = logged_in_client.post("/api/platforms/match", json={"platform": "steam"})

    assert response.status_code == 400
