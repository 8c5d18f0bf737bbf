import pytest
from datetime import timedelta
from httpx import AsyncClient

from models import utc_now
from services import chat_store

pytestmark = pytest.mark.asyncio


async def _project(ac: AsyncClient, headers: dict) -> dict:
    return (await ac.post("/api/projects", json={"name": "Borealis"}, headers=headers)).json()


async def _invite(ac: AsyncClient, headers: dict, project_id: str, user_id: str, role: str = "member"):
    return await ac.post(f"/api/projects/{project_id}/invitations", json={"invitee_id": user_id, "role": role}, headers=headers)


async def test_invite_notifies_invitee(db, async_client: AsyncClient, auth_headers: dict, jane, jane_headers: dict):
    project = await _project(async_client, auth_headers)
    resp = await _invite(async_client, auth_headers, project["id"], jane["id"])
    assert resp.status_code == 201
    invitation = resp.json()
    assert invitation["status"] == "pending"

    notification = await db.notifications.find_one({"user_id": jane["id"], "type": "project_invitation"})
    assert notification["metadata"]["project_name"] == "Borealis"

    mine = (await async_client.get("/api/invitations", headers=jane_headers)).json()
    assert [i["id"] for i in mine] == [invitation["id"]]
    assert mine[0]["project_name"] == "Borealis"


async def test_duplicate_pending_invitation_conflicts(async_client: AsyncClient, auth_headers: dict, jane):
    project = await _project(async_client, auth_headers)
    assert (await _invite(async_client, auth_headers, project["id"], jane["id"])).status_code == 201
    assert (await _invite(async_client, auth_headers, project["id"], jane["id"])).status_code == 409


async def test_only_managers_invite(async_client: AsyncClient, auth_headers: dict, jane, jane_headers: dict, bob):
    project = await _project(async_client, auth_headers)
    await async_client.post(f"/api/projects/{project['id']}/members", json={"user_id": jane["id"]}, headers=auth_headers)
    assert (await _invite(async_client, jane_headers, project["id"], bob["id"])).status_code == 403


async def test_accept_joins_project_and_chat(db, async_client: AsyncClient, auth_headers: dict, test_user, jane, jane_headers: dict):
    project = await _project(async_client, auth_headers)
    chat = (await async_client.get(f"/api/projects/{project['id']}/chat", headers=auth_headers)).json()
    invitation = (await _invite(async_client, auth_headers, project["id"], jane["id"], role="admin")).json()

    resp = await async_client.post(f"/api/invitations/{invitation['id']}/accept", headers=jane_headers)
    assert resp.status_code == 200
    assert resp.json()["member"]["role"] == "admin"

    assert await db.project_members.find_one({"project_id": project["id"], "user_id": jane["id"]})
    assert await chat_store.is_member(db, chat["id"], jane["id"])
    assert await db.notifications.count_documents({"user_id": test_user["id"], "title": "Invitation Accepted"}) == 1
    stored = await db.project_invitations.find_one({"id": invitation["id"]})
    assert stored["status"] == "accepted"


async def test_accept_twice_fails(async_client: AsyncClient, auth_headers: dict, jane, jane_headers: dict):
    project = await _project(async_client, auth_headers)
    invitation = (await _invite(async_client, auth_headers, project["id"], jane["id"])).json()
    await async_client.post(f"/api/invitations/{invitation['id']}/accept", headers=jane_headers)
    resp = await async_client.post(f"/api/invitations/{invitation['id']}/accept", headers=jane_headers)
    assert resp.status_code == 400


async def test_expired_invitation_cannot_be_accepted(db, async_client: AsyncClient, auth_headers: dict, jane, jane_headers: dict):
    project = await _project(async_client, auth_headers)
    invitation = (await _invite(async_client, auth_headers, project["id"], jane["id"])).json()
    await db.project_invitations.update_one({"id": invitation["id"]}, {"$set": {"expires_at": utc_now() - timedelta(hours=1)}})

    resp = await async_client.post(f"/api/invitations/{invitation['id']}/accept", headers=jane_headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invitation has expired"
    assert (await async_client.get("/api/invitations", headers=jane_headers)).json() == []


async def test_only_invitee_can_answer(async_client: AsyncClient, auth_headers: dict, jane, bob_headers: dict):
    project = await _project(async_client, auth_headers)
    invitation = (await _invite(async_client, auth_headers, project["id"], jane["id"])).json()
    assert (await async_client.post(f"/api/invitations/{invitation['id']}/accept", headers=bob_headers)).status_code == 403


async def test_reject_notifies_inviter(db, async_client: AsyncClient, auth_headers: dict, test_user, jane, jane_headers: dict):
    project = await _project(async_client, auth_headers)
    invitation = (await _invite(async_client, auth_headers, project["id"], jane["id"])).json()

    resp = await async_client.post(f"/api/invitations/{invitation['id']}/reject", headers=jane_headers)
    assert resp.status_code == 200
    assert await db.notifications.count_documents({"user_id": test_user["id"], "title": "Invitation Declined"}) == 1
    assert not await db.project_members.find_one({"project_id": project["id"], "user_id": jane["id"]})


async def test_cancel_and_reinvite(async_client: AsyncClient, auth_headers: dict, jane, jane_headers: dict):
    project = await _project(async_client, auth_headers)
    invitation = (await _invite(async_client, auth_headers, project["id"], jane["id"])).json()

    assert (await async_client.delete(f"/api/invitations/{invitation['id']}", headers=auth_headers)).status_code == 200
    assert (await async_client.post(f"/api/invitations/{invitation['id']}/accept", headers=jane_headers)).status_code == 400
    assert (await _invite(async_client, auth_headers, project["id"], jane["id"])).status_code == 201


async def test_resend_extends_expiry(db, async_client: AsyncClient, auth_headers: dict, jane):
    project = await _project(async_client, auth_headers)
    invitation = (await _invite(async_client, auth_headers, project["id"], jane["id"])).json()
    soon = utc_now() + timedelta(hours=1)
    await db.project_invitations.update_one({"id": invitation["id"]}, {"$set": {"expires_at": soon}})

    resp = await async_client.post(f"/api/invitations/{invitation['id']}/resend", headers=auth_headers)
    assert resp.status_code == 200
    stored = await db.project_invitations.find_one({"id": invitation["id"]})
    assert stored["expires_at"] > soon + timedelta(days=1)
    assert await db.notifications.count_documents({"user_id": jane["id"], "type": "project_invitation"}) == 2


async def test_project_invitation_list_for_managers(async_client: AsyncClient, auth_headers: dict, jane, bob):
    project = await _project(async_client, auth_headers)
    await _invite(async_client, auth_headers, project["id"], jane["id"])
    await _invite(async_client, auth_headers, project["id"], bob["id"])
    listed = (await async_client.get(f"/api/projects/{project['id']}/invitations?status=pending", headers=auth_headers)).json()
    assert len(listed) == 2
