"""
Tests for task comments.

Tests cover:
- Commenting on a task and listing comments oldest first
- Author-only edit and delete (403 for everyone else, admins included)
- Comments on missing or deleted tasks (404)
- Content validation (400)
"""

import logging

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

import models
from tests.conftest import make_task

logger = logging.getLogger(__name__)


def test_comment_lifecycle_between_two_users(
    client: TestClient,
    test_db: Session,
    regular_user: models.User,
    another_user: models.User,
    user_auth_headers: dict,
    another_user_auth_headers: dict
):
    """
    One user comments on another user's task; only the author can edit or
    delete the comment, and a deleted comment no longer appears.
    """
    logger.debug("Testing comment lifecycle")
    task = make_task(test_db, regular_user, "Discuss me")

    # another_user comments on regular_user's task
    response = client.post(
        f"/api/comments/{task.id}",
        json={"content": "  Looks good to me  "},
        headers=another_user_auth_headers
    )
    assert response.status_code == 201, f"Expected 201, got {response.status_code}: {response.json()}"
    comment = response.json()
    assert comment["content"] == "Looks good to me"
    assert comment["taskId"] == task.id
    assert comment["author"]["id"] == another_user.id
    assert comment["author"]["username"] == "another"

    # The task creator cannot edit someone else's comment
    response = client.put(
        f"/api/comments/{comment['id']}",
        json={"content": "Edited by someone else"},
        headers=user_auth_headers
    )
    assert response.status_code == 403, f"Expected 403, got {response.status_code}: {response.json()}"

    # The author can
    response = client.put(
        f"/api/comments/{comment['id']}",
        json={"content": "Looks great"},
        headers=another_user_auth_headers
    )
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert response.json()["content"] == "Looks great"

    # The task creator cannot delete it either
    response = client.delete(f"/api/comments/{comment['id']}", headers=user_auth_headers)
    assert response.status_code == 403, f"Expected 403, got {response.status_code}: {response.json()}"

    response = client.delete(f"/api/comments/{comment['id']}", headers=another_user_auth_headers)
    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"

    listing = client.get(f"/api/comments/{task.id}", headers=user_auth_headers)
    assert listing.status_code == 200
    assert listing.json() == []

    # Gone for good as far as the API is concerned
    response = client.put(
        f"/api/comments/{comment['id']}",
        json={"content": "Back again"},
        headers=another_user_auth_headers
    )
    assert response.status_code == 404, f"Expected 404, got {response.status_code}: {response.json()}"

    test_db.expire_all()
    row = test_db.query(models.Comment).filter(models.Comment.id == comment["id"]).one()
    assert row.deleted_at is not None
    logger.info("✓ Comment lifecycle enforces authorship")


def test_admin_cannot_edit_other_users_comment(
    client: TestClient,
    test_db: Session,
    regular_user: models.User,
    user_auth_headers: dict,
    auth_headers: dict
):
    task = make_task(test_db, regular_user, "Task")
    comment = client.post(f"/api/comments/{task.id}", json={"content": "Mine"}, headers=user_auth_headers).json()

    response = client.put(f"/api/comments/{comment['id']}", json={"content": "Admin edit"}, headers=auth_headers)

    assert response.status_code == 403, f"Expected 403, got {response.status_code}: {response.json()}"


def test_list_comments_oldest_first(
    client: TestClient,
    test_db: Session,
    regular_user: models.User,
    user_auth_headers: dict,
    another_user_auth_headers: dict
):
    task = make_task(test_db, regular_user, "Chatty")
    for index, headers in enumerate([user_auth_headers, another_user_auth_headers, user_auth_headers]):
        client.post(f"/api/comments/{task.id}", json={"content": f"Comment {index}"}, headers=headers)

    response = client.get(f"/api/comments/{task.id}", headers=another_user_auth_headers)

    assert response.status_code == 200, f"Expected 200, got {response.status_code}: {response.json()}"
    assert [comment["content"] for comment in response.json()] == ["Comment 0", "Comment 1", "Comment 2"]


def test_comment_on_missing_task(client: TestClient, user_auth_headers: dict):
    response = client.post("/api/comments/9999", json={"content": "Hello?"}, headers=user_auth_headers)

    assert response.status_code == 404, f"Expected 404, got {response.status_code}: {response.json()}"
    assert response.json()["detail"] == "Task not found"


def test_comments_hidden_once_task_is_deleted(
    client: TestClient,
    test_db: Session,
    regular_user: models.User,
    user_auth_headers: dict
):
    task = make_task(test_db, regular_user, "Short-lived")
    comment = client.post(f"/api/comments/{task.id}", json={"content": "Note"}, headers=user_auth_headers).json()

    client.delete(f"/api/tasks/{task.id}", headers=user_auth_headers)

    assert client.get(f"/api/comments/{task.id}", headers=user_auth_headers).status_code == 404
    assert client.post(f"/api/comments/{task.id}", json={"content": "Late"}, headers=user_auth_headers).status_code == 404
    assert client.delete(f"/api/comments/{comment['id']}", headers=user_auth_headers).status_code == 404


def test_comment_content_validation(
    client: TestClient,
    test_db: Session,
    regular_user: models.User,
    user_auth_headers: dict
):
    task = make_task(test_db, regular_user, "Task")

    for content in ["", "   ", "x" * 1001]:
        response = client.post(f"/api/comments/{task.id}", json={"content": content}, headers=user_auth_headers)
        assert response.status_code == 400, f"Expected 400, got {response.status_code}: {response.json()}"
        assert response.json()["field"] == "content"

    assert test_db.query(models.Comment).count() == 0
