from fastapi.testclient import TestClient


def create_batch(test_client: TestClient, raw_input: str, existing: int = 0):
    return test_client.post(
        "/api/bulk-add",
        json={"rawInput": raw_input, "listId": "list-1", "existingItemCount": existing},
    )


def test_create_batch_submits_unambiguous_entries(test_client: TestClient, list_appender):
    response = create_batch(test_client, "Joe's Pizza #pizza\nNowhere Diner")

    assert response.status_code == 201
    payload = response.json()
    assert payload["status"] == "completed"
    assert payload["listId"] == "list-1"
    first, second = payload["entries"]
    assert first["status"] == "resolved"
    assert first["tags"] == ["pizza"]
    assert first["resolved"]["address"]["zipcode"] == "10014"
    assert second["status"] == "failed"
    assert second["error"] == "not_found"
    assert payload["failed"] == [1]
    outcome = payload["outcome"]
    assert outcome["submitted"] == 1
    assert outcome["skippedForLimit"] == 0
    assert [r["status"] for r in outcome["results"]] == ["submitted", "skipped_due_to_failure"]
    assert [request.name for request in list_appender.requests] == ["Joe's Pizza"]


def test_create_batch_marks_duplicates(test_client: TestClient):
    payload = create_batch(test_client, "Joe's Pizza\njoe's pizza").json()
    assert [entry["duplicateOf"] for entry in payload["entries"]] == [None, 0]


def test_create_batch_requires_list_id(test_client: TestClient):
    response = test_client.post("/api/bulk-add", json={"rawInput": "Joe's Pizza"})
    assert response.status_code == 422


def test_ambiguous_batch_waits_for_choice_then_submits(test_client: TestClient, list_appender):
    created = create_batch(test_client, "Shake Shack, burgers, NYC\nJoe's Pizza").json()
    batch_id = created["batchId"]

    assert created["status"] == "awaiting_choices"
    assert created["needsChoice"] == [0]
    assert created["outcome"] is None
    assert [c["candidateId"] for c in created["entries"][0]["candidates"]] == ["shack-madison", "shack-astor"]
    assert list_appender.requests == []

    early = test_client.post(f"/api/bulk-add/{batch_id}/submit")
    assert early.status_code == 409

    bad_choice = test_client.post(
        f"/api/bulk-add/{batch_id}/choices", json={"index": 0, "candidateId": "katz"}
    )
    assert bad_choice.status_code == 409

    wrong_entry = test_client.post(
        f"/api/bulk-add/{batch_id}/choices", json={"index": 1, "candidateId": "shack-astor"}
    )
    assert wrong_entry.status_code == 409

    chosen = test_client.post(
        f"/api/bulk-add/{batch_id}/choices", json={"index": 0, "candidateId": "shack-astor"}
    )
    assert chosen.status_code == 200
    assert chosen.json()["status"] == "ready"
    assert chosen.json()["entries"][0]["resolved"]["name"] == "Shake Shack Astor Place"

    snapshot = test_client.get(f"/api/bulk-add/{batch_id}").json()
    assert snapshot["status"] == "ready"

    submitted = test_client.post(f"/api/bulk-add/{batch_id}/submit")
    assert submitted.status_code == 200
    assert submitted.json()["status"] == "completed"
    assert submitted.json()["outcome"]["submitted"] == 2
    assert [request.name for request in list_appender.requests] == ["Shake Shack Astor Place", "Joe's Pizza"]


def test_limit_is_reported(test_client: TestClient):
    payload = create_batch(test_client, "Joe's Pizza\nKatz's Deli, pastrami, Manhattan", existing=49).json()

    outcome = payload["outcome"]
    assert outcome["submitted"] == 1
    assert outcome["skippedForLimit"] == 1
    assert outcome["results"][1]["reason"] == "list_limit_reached"


def test_delete_batch(test_client: TestClient):
    batch_id = create_batch(test_client, "Shake Shack, burgers, NYC").json()["batchId"]

    assert test_client.delete(f"/api/bulk-add/{batch_id}").status_code == 204
    assert test_client.get(f"/api/bulk-add/{batch_id}").status_code == 404
    assert test_client.delete(f"/api/bulk-add/{batch_id}").status_code == 404


def test_unknown_batch_is_404(test_client: TestClient):
    assert test_client.get("/api/bulk-add/missing").status_code == 404
    response = test_client.post("/api/bulk-add/missing/choices", json={"index": 0, "candidateId": "x"})
    assert response.status_code == 404


def test_snapshot_shows_neighborhood_and_note(test_client: TestClient, list_appender):
    payload = create_batch(test_client, "Joe's Pizza\nKatz's Deli, pastrami, Manhattan").json()

    joes, katz = (entry["resolved"] for entry in payload["entries"])
    assert joes["neighborhood"] == {"neighborhoodId": 7, "name": "West Village", "cityName": "New York"}
    assert joes["note"] is None
    assert katz["neighborhood"] is None
    assert katz["note"] == "no neighborhood assigned for zipcode 10002"
    assert [request.neighborhood_id for request in list_appender.requests] == [7, None]
