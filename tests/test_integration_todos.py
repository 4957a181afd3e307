"""Integration tests for the task and checklist endpoints."""

import pytest

PASSWORD = "TodoPassword123!"


def _user_headers(client, runtime, username):
    runtime.auth.register(username, f"{username}@example.com", PASSWORD)
    response = client.post(
        "/login", json={"username": username, "password": PASSWORD, "no_cookie": True}
    )
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def jane(client, runtime):
    return _user_headers(client, runtime, "jane")


@pytest.fixture
def john(client, runtime):
    return _user_headers(client, runtime, "john")


def _create_task(client, headers, **fields):
    fields.setdefault("title", "buy milk")
    response = client.post("/tasks", json=fields, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["task"]


def _create_checklist(client, headers, **fields):
    fields.setdefault("title", "groceries")
    response = client.post("/checklists", json=fields, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["checklist"]


class TestTasks:
    def test_requires_authentication(self, client):
        assert client.get("/tasks").status_code == 401
        assert client.post("/tasks", json={"title": "x"}).status_code == 401

    def test_create_and_get(self, client, jane):
        task_id = _create_task(
            client, jane, details="2%", deadline="2030-01-01T12:00:00Z"
        )
        response = client.get(f"/tasks/{task_id}", headers=jane)
        assert response.status_code == 200
        task = response.json()["task"]
        assert task["id"] == task_id
        assert task["title"] == "buy milk"
        assert task["details"] == "2%"
        assert task["completed"] is False
        assert task["deadline"].startswith("2030-01-01T12:00:00")
        assert "checklist" not in task

    def test_list(self, client, jane):
        first = _create_task(client, jane, title="one")
        second = _create_task(client, jane, title="two")
        response = client.get("/tasks", headers=jane)
        assert response.status_code == 200
        assert [t["id"] for t in response.json()["tasks"]] == [first, second]

    def test_empty_list(self, client, jane):
        response = client.get("/tasks", headers=jane)
        assert response.json() == {"success": True, "tasks": []}

    def test_update(self, client, jane):
        task_id = _create_task(client, jane)
        response = client.put(
            f"/tasks/{task_id}", json={"completed": True, "title": "buy oat milk"}, headers=jane
        )
        assert response.status_code == 200
        task = client.get(f"/tasks/{task_id}", headers=jane).json()["task"]
        assert task["completed"] is True
        assert task["title"] == "buy oat milk"
        assert task["details"] == ""

    def test_delete(self, client, jane):
        task_id = _create_task(client, jane)
        assert client.delete(f"/tasks/{task_id}", headers=jane).status_code == 200
        assert client.get(f"/tasks/{task_id}", headers=jane).status_code == 404
        assert client.delete(f"/tasks/{task_id}", headers=jane).status_code == 404

    def test_missing_task(self, client, jane):
        response = client.get("/tasks/999", headers=jane)
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "task not found"}

    def test_title_is_required(self, client, jane):
        response = client.post("/tasks", json={"details": "no title"}, headers=jane)
        assert response.status_code == 400
        assert response.json()["error"].startswith("title")

    def test_title_length_is_limited(self, client, jane):
        response = client.post("/tasks", json={"title": "x" * 256}, headers=jane)
        assert response.status_code == 400

    def test_non_integer_id(self, client, jane):
        assert client.get("/tasks/abc", headers=jane).status_code == 400

    def test_other_users_tasks_are_invisible(self, client, jane, john):
        task_id = _create_task(client, jane)
        assert client.get(f"/tasks/{task_id}", headers=john).status_code == 404
        assert client.put(f"/tasks/{task_id}", json={"title": "x"}, headers=john).status_code == 404
        assert client.delete(f"/tasks/{task_id}", headers=john).status_code == 404
        assert client.get("/tasks", headers=john).json()["tasks"] == []
        assert client.get(f"/tasks/{task_id}", headers=jane).status_code == 200


class TestChecklists:
    def test_create_with_tasks(self, client, jane):
        checklist_id = _create_checklist(client, jane, details="weekly")
        _create_task(client, jane, title="milk", checklist=checklist_id, completed=True)
        _create_task(client, jane, title="eggs", checklist=checklist_id)
        _create_task(client, jane, title="call mom")

        response = client.get(f"/checklists/{checklist_id}", headers=jane)
        assert response.status_code == 200
        checklist = response.json()["checklist"]
        assert checklist["title"] == "groceries"
        assert checklist["details"] == "weekly"
        assert checklist["size"] == 2
        assert checklist["completed_tasks"] == 1
        assert checklist["archived_tasks"] == 0

        tasks = client.get("/tasks", params={"checklist": checklist_id}, headers=jane).json()
        assert [t["title"] for t in tasks["tasks"]] == ["milk", "eggs"]
        assert all(t["checklist"] == checklist_id for t in tasks["tasks"])

    def test_list_and_update(self, client, jane):
        first = _create_checklist(client, jane, title="groceries")
        _create_checklist(client, jane, title="chores")

        response = client.put(f"/checklists/{first}", json={"archived": True}, headers=jane)
        assert response.status_code == 200

        listed = client.get("/checklists", headers=jane).json()["checklists"]
        assert [c["title"] for c in listed] == ["groceries", "chores"]
        assert listed[0]["archived"] is True

    def test_delete_removes_member_tasks(self, client, jane):
        checklist_id = _create_checklist(client, jane)
        member = _create_task(client, jane, checklist=checklist_id)
        loose = _create_task(client, jane)

        assert client.delete(f"/checklists/{checklist_id}", headers=jane).status_code == 200
        assert client.get(f"/checklists/{checklist_id}", headers=jane).status_code == 404
        assert client.get(f"/tasks/{member}", headers=jane).status_code == 404
        assert client.get(f"/tasks/{loose}", headers=jane).status_code == 200

    def test_move_task_between_checklists(self, client, jane):
        checklist_id = _create_checklist(client, jane)
        task_id = _create_task(client, jane, checklist=checklist_id)

        client.put(f"/tasks/{task_id}", json={"checklist": None}, headers=jane)
        task = client.get(f"/tasks/{task_id}", headers=jane).json()["task"]
        assert "checklist" not in task
        assert client.get(f"/checklists/{checklist_id}", headers=jane).json()["checklist"]["size"] == 0

    def test_cannot_attach_task_to_other_users_checklist(self, client, jane, john):
        theirs = _create_checklist(client, john)
        response = client.post("/tasks", json={"title": "sneaky", "checklist": theirs}, headers=jane)
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "checklist not found"}

    def test_other_users_checklists_are_invisible(self, client, jane, john):
        checklist_id = _create_checklist(client, jane)
        assert client.get(f"/checklists/{checklist_id}", headers=john).status_code == 404
        assert client.delete(f"/checklists/{checklist_id}", headers=john).status_code == 404
        assert client.get("/checklists", headers=john).json()["checklists"] == []


def test_overview_counts(client, jane):
    checklist_id = _create_checklist(client, jane)
    _create_task(client, jane, checklist=checklist_id)
    _create_task(client, jane)

    response = client.get("/", headers=jane)
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["tasks"] == 2
    assert body["checklists"] == 1
    assert body["user"]["email"] == "jane@example.com"
    assert body["user"]["last_seen"]
