"""Tests for project endpoints."""
from uuid import UUID, uuid4

import pytest
from teamtask_core import models
from teamtask_core.models import ActivityAction, ActivityEntity


def _promote(client, owner, team, user):
    response = client.put(
        f"/api/v1/teams/{team['id']}/members/{user.id}/role",
        json={"role": "admin"},
        headers=owner.headers,
    )
    assert response.status_code == 200


class TestProjectCrud:
    """Test project create, read, update and delete."""

    def test_member_can_create_project(self, client, member, team, db_session):
        response = client.post(
            "/api/v1/projects/",
            json={"team_id": team["id"], "name": "Mobile", "description": "iOS and Android"},
            headers=member.headers,
        )

        assert response.status_code == 201
        data = response.json()
        assert data["team_id"] == team["id"]
        assert data["created_by"] == {"id": str(member.id), "name": member.name, "email": member.email}

        record = (
            db_session.query(models.Activity)
            .filter(models.Activity.entity == ActivityEntity.PROJECT)
            .one()
        )
        assert record.action == ActivityAction.CREATED
        assert str(record.entity_id) == data["id"]

    def test_outsider_cannot_create_project(self, client, outsider, team):
        response = client.post(
            "/api/v1/projects/",
            json={"team_id": team["id"], "name": "Mobile"},
            headers=outsider.headers,
        )

        assert response.status_code == 403

    def test_create_in_missing_team(self, client, owner):
        response = client.post(
            "/api/v1/projects/",
            json={"team_id": str(uuid4()), "name": "Mobile"},
            headers=owner.headers,
        )

        assert response.status_code == 404

    def test_list_team_projects(self, client, owner, member, team, project):
        client.post("/api/v1/projects/", json={"team_id": team["id"], "name": "Mobile"}, headers=owner.headers)

        response = client.get(f"/api/v1/projects/team/{team['id']}?page_size=1", headers=member.headers)

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["page_size"] == 1
        assert data["total_pages"] == 2
        assert len(data["items"]) == 1

    def test_list_projects_outsider_forbidden(self, client, outsider, team):
        response = client.get(f"/api/v1/projects/team/{team['id']}", headers=outsider.headers)

        assert response.status_code == 403

    def test_get_project(self, client, member, project):
        response = client.get(f"/api/v1/projects/{project['id']}", headers=member.headers)

        assert response.status_code == 200
        assert response.json()["name"] == "Website"

    def test_get_missing_project_before_permission(self, client, outsider):
        response = client.get(f"/api/v1/projects/{uuid4()}", headers=outsider.headers)

        assert response.status_code == 404
        assert response.json()["message"] == "Project not found"

    def test_member_cannot_update_project(self, client, member, project):
        response = client.put(f"/api/v1/projects/{project['id']}", json={"name": "X"}, headers=member.headers)

        assert response.status_code == 403
        assert response.json()["message"] == "Only team admins or owners can update projects"

    def test_admin_updates_project(self, client, owner, member, team, project, db_session):
        _promote(client, owner, team, member)

        response = client.put(
            f"/api/v1/projects/{project['id']}",
            json={"name": "Website v2", "description": None},
            headers=member.headers,
        )

        assert response.status_code == 200
        assert response.json()["name"] == "Website v2"

        record = (
            db_session.query(models.Activity)
            .filter(models.Activity.entity == ActivityEntity.PROJECT, models.Activity.action == ActivityAction.UPDATED)
            .one()
        )
        # description was already null, so only the name changed
        assert record.details == {"changes": {"name": {"old": "Website", "new": "Website v2"}}}

    def test_noop_update_records_nothing(self, client, owner, project, db_session):
        response = client.put(f"/api/v1/projects/{project['id']}", json={"name": "Website"}, headers=owner.headers)

        assert response.status_code == 200
        count = (
            db_session.query(models.Activity)
            .filter(models.Activity.action == ActivityAction.UPDATED)
            .count()
        )
        assert count == 0

    def test_delete_project_keeps_tasks(self, client, owner, project, db_session):
        task = client.post(
            "/api/v1/tasks/",
            json={"project_id": project["id"], "title": "Landing page"},
            headers=owner.headers,
        ).json()

        response = client.delete(f"/api/v1/projects/{project['id']}", headers=owner.headers)

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Project deleted successfully"}
        assert client.get(f"/api/v1/projects/{project['id']}", headers=owner.headers).status_code == 404
        assert db_session.get(models.Task, UUID(task["id"])) is not None

    def test_member_cannot_delete_project(self, client, member, project):
        response = client.delete(f"/api/v1/projects/{project['id']}", headers=member.headers)

        assert response.status_code == 403


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
