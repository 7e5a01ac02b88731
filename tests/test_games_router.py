from billing_relay_svc.models.custom_game import CustomGame


def test_save_and_list_games(client, db_session):
    response = client.post("/api/games", json={"id": "g1", "userId": "u1", "title": "Quiz night"})
    assert response.status_code == 200
    data = response.json()
    assert data == {"success": True, "message": "Game saved successfully", "id": "g1"}

    client.post("/api/games", json={"id": "g2", "userId": "u2", "title": "Other"})

    games = client.get("/api/games").json()["games"]
    assert {game["id"] for game in games} == {"g1", "g2"}
    assert all("timestamp" in game for game in games)

    own = client.get("/api/games", params={"user_id": "u1"}).json()["games"]
    assert [game["title"] for game in own] == ["Quiz night"]


def test_save_game_assigns_id(client, db_session):
    response = client.post("/api/games", json={"title": "No id yet"})
    assert response.status_code == 200
    game_id = response.json()["id"]
    assert db_session.get(CustomGame, game_id).game_data["title"] == "No id yet"


def test_save_game_overwrites_existing(client, db_session):
    client.post("/api/games", json={"id": "g1", "title": "First"})
    client.post("/api/games", json={"id": "g1", "title": "Second"})
    assert db_session.query(CustomGame).count() == 1
    assert client.get("/api/games").json()["games"][0]["title"] == "Second"


def test_save_game_rejects_non_object(client):
    response = client.post("/api/games", json=["not", "a", "game"])
    assert response.status_code == 422


def test_delete_game(client, db_session):
    client.post("/api/games", json={"id": "g1", "title": "Doomed"})
    response = client.delete("/api/games", params={"id": "g1"})
    assert response.status_code == 200
    assert response.json()["message"] == "Game deleted successfully!"
    assert db_session.query(CustomGame).count() == 0


def test_delete_game_requires_id(client):
    response = client.delete("/api/games")
    assert response.status_code == 400
    assert response.json()["detail"] == "Game ID is required"


def test_delete_unknown_game(client):
    response = client.delete("/api/games", params={"id": "missing"})
    assert response.status_code == 404
    assert response.json()["detail"] == "Game not found"


def test_unsupported_method(client):
    response = client.put("/api/games", json={})
    assert response.status_code == 405
