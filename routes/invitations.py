from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException
from datetime import timedelta
from models import utc_now
from models.invitation import ProjectInvitationModel, InvitationCreate
from models.user import UserModel
from routes.deps import get_current_user, get_db, get_gateway, get_dispatcher, get_project_membership, require_project_role
from routes.projects import add_project_member, sync_project_chat_live
from realtime.rooms import ProjectRoom
from constants import InvitationStatus, NotificationTypes, ProjectRoles
from errors import ValidationError
from utils.email import send_invitation_email
from config import config
from logging_config import get_logger

router = APIRouter(prefix="/api", tags=["Invitations"])
logger = get_logger("invitations")

NO_ID = {"_id": 0}


# --- HELPERS ---

async def get_invitation(db, invitation_id: str) -> dict:
    invitation = await db.project_invitations.find_one({"id": invitation_id}, NO_ID)
    if not invitation:
        raise HTTPException(status_code=404, detail="Invitation not found")
    return invitation


async def get_pending_for_invitee(db, invitation_id: str, user_id: str) -> dict:
    """Only the invitee can answer, and only while the invitation is pending and unexpired."""
    invitation = await get_invitation(db, invitation_id)
    if invitation["invitee_id"] != user_id:
        raise HTTPException(status_code=403, detail="This invitation is not addressed to you")
    if invitation["status"] != InvitationStatus.PENDING:
        raise ValidationError(f"Invitation is already {invitation['status']}")
    if invitation["expires_at"] <= utc_now():
        raise ValidationError("Invitation has expired")
    return invitation


async def notify_invitee(dispatcher, invitation: dict, inviter: UserModel, project: dict):
    try:
        await dispatcher.create_notification(
            invitation["invitee_id"],
            NotificationTypes.PROJECT_INVITATION,
            "Project Invitation",
            f"{inviter.name} invited you to join {project['name']}",
            related_id=invitation["id"],
            metadata={
                "invitation_id": invitation["id"],
                "project_id": project["id"],
                "project_name": project["name"],
                "inviter_id": inviter.id,
                "role": invitation["role"],
            },
        )
    except Exception as e:
        logger.error(f"Failed to notify invitee: {e}", extra={"data": {"invitation_id": invitation["id"]}})


async def notify_inviter(dispatcher, invitation: dict, invitee: UserModel, project: dict, accepted: bool):
    verb = "accepted" if accepted else "declined"
    try:
        await dispatcher.create_notification(
            invitation["inviter_id"],
            NotificationTypes.PROJECT_MEMBER_ADDED if accepted else NotificationTypes.PROJECT_INVITATION,
            f"Invitation {verb.capitalize()}",
            f"{invitee.name} {verb} your invitation to {project['name']}",
            related_id=project["id"],
            metadata={"invitation_id": invitation["id"], "project_id": project["id"], "invitee_id": invitee.id},
        )
    except Exception as e:
        logger.error(f"Failed to notify inviter: {e}", extra={"data": {"invitation_id": invitation["id"]}})


# --- PROJECT SCOPED ---

@router.post("/projects/{project_id}/invitations", status_code=201)
async def send_invitation(
    project_id: str,
    background_tasks: BackgroundTasks,
    body: InvitationCreate = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    dispatcher=Depends(get_dispatcher)
):
    membership = await get_project_membership(db, project_id, current_user.id)
    require_project_role(membership, *ProjectRoles.MANAGERS)

    invitee = await db.users.find_one({"id": body.invitee_id}, NO_ID)
    if not invitee:
        raise HTTPException(status_code=404, detail="User not found")
    if await db.project_members.find_one({"project_id": project_id, "user_id": body.invitee_id}):
        raise HTTPException(status_code=409, detail="User is already a member of this project")
    if await db.project_invitations.find_one({
        "project_id": project_id,
        "invitee_id": body.invitee_id,
        "status": InvitationStatus.PENDING,
    }):
        raise HTTPException(status_code=409, detail="A pending invitation already exists for this user")

    invitation = ProjectInvitationModel(
        project_id=project_id,
        inviter_id=current_user.id,
        invitee_id=body.invitee_id,
        role=body.role,
        message=body.message,
    )
    invitation_data = invitation.model_dump()
    await db.project_invitations.insert_one(invitation_data)
    invitation_data.pop("_id", None)

    project = await db.projects.find_one({"id": project_id}, NO_ID)
    await notify_invitee(dispatcher, invitation_data, current_user, project)
    background_tasks.add_task(
        send_invitation_email,
        invitee["email"], current_user.name, project["name"], body.role, config.FRONTEND_URL
    )

    logger.info(f"Invitation sent", extra={"data": {"project_id": project_id, "invitee_id": body.invitee_id}})
    return invitation_data


@router.get("/projects/{project_id}/invitations")
async def list_project_invitations(
    project_id: str,
    status: str = None,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db)
):
    membership = await get_project_membership(db, project_id, current_user.id)
    require_project_role(membership, *ProjectRoles.MANAGERS)
    query = {"project_id": project_id}
    if status:
        query["status"] = status
    return await db.project_invitations.find(query, NO_ID).sort("created_at", -1).to_list(None)


# --- INVITEE SCOPED ---

@router.get("/invitations")
async def my_invitations(current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    """Pending, unexpired invitations addressed to the current user, with project names."""
    invitations = await db.project_invitations.find({
        "invitee_id": current_user.id,
        "status": InvitationStatus.PENDING,
        "expires_at": {"$gt": utc_now()},
    }, NO_ID).sort("created_at", -1).to_list(None)

    projects = await db.projects.find(
        {"id": {"$in": [i["project_id"] for i in invitations]}}, {"_id": 0, "id": 1, "name": 1}
    ).to_list(None)
    names = {p["id"]: p["name"] for p in projects}
    for invitation in invitations:
        invitation["project_name"] = names.get(invitation["project_id"])
    return invitations


@router.post("/invitations/{invitation_id}/accept")
async def accept_invitation(
    invitation_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
    dispatcher=Depends(get_dispatcher)
):
    invitation = await get_pending_for_invitee(db, invitation_id, current_user.id)
    project = await db.projects.find_one({"id": invitation["project_id"]}, NO_ID)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")

    member = await add_project_member(db, project["id"], current_user.id, invitation["role"])
    await db.project_invitations.update_one(
        {"id": invitation_id},
        {"$set": {"status": InvitationStatus.ACCEPTED, "responded_at": utc_now()}}
    )
    await sync_project_chat_live(db, gateway, project["id"])
    gateway.join_user(current_user.id, ProjectRoom(project["id"]))

    await notify_inviter(dispatcher, invitation, current_user, project, accepted=True)
    logger.info(f"Invitation accepted", extra={"data": {"invitation_id": invitation_id, "project_id": project["id"]}})
    return {"message": "Invitation accepted", "member": member}


@router.post("/invitations/{invitation_id}/reject")
async def reject_invitation(
    invitation_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    dispatcher=Depends(get_dispatcher)
):
    invitation = await get_pending_for_invitee(db, invitation_id, current_user.id)
    await db.project_invitations.update_one(
        {"id": invitation_id},
        {"$set": {"status": InvitationStatus.REJECTED, "responded_at": utc_now()}}
    )
    project = await db.projects.find_one({"id": invitation["project_id"]}, NO_ID)
    if project:
        await notify_inviter(dispatcher, invitation, current_user, project, accepted=False)
    return {"message": "Invitation rejected"}


# --- INVITER SCOPED ---

async def get_managed_pending(db, invitation_id: str, user_id: str) -> dict:
    invitation = await get_invitation(db, invitation_id)
    membership = await get_project_membership(db, invitation["project_id"], user_id)
    if invitation["inviter_id"] != user_id:
        require_project_role(membership, *ProjectRoles.MANAGERS)
    if invitation["status"] != InvitationStatus.PENDING:
        raise ValidationError(f"Invitation is already {invitation['status']}")
    return invitation


@router.delete("/invitations/{invitation_id}")
async def cancel_invitation(
    invitation_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db)
):
    await get_managed_pending(db, invitation_id, current_user.id)
    await db.project_invitations.update_one(
        {"id": invitation_id},
        {"$set": {"status": InvitationStatus.CANCELLED, "responded_at": utc_now()}}
    )
    logger.info(f"Invitation cancelled", extra={"data": {"invitation_id": invitation_id}})
    return {"message": "Invitation cancelled"}


@router.post("/invitations/{invitation_id}/resend")
async def resend_invitation(
    invitation_id: str,
    background_tasks: BackgroundTasks,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    dispatcher=Depends(get_dispatcher)
):
    """Push the expiry out again and re-notify the invitee."""
    invitation = await get_managed_pending(db, invitation_id, current_user.id)
    expires_at = utc_now() + timedelta(days=config.INVITATION_EXPIRY_DAYS)
    await db.project_invitations.update_one({"id": invitation_id}, {"$set": {"expires_at": expires_at}})
    invitation["expires_at"] = expires_at

    project = await db.projects.find_one({"id": invitation["project_id"]}, NO_ID)
    await notify_invitee(dispatcher, invitation, current_user, project)
    invitee = await db.users.find_one({"id": invitation["invitee_id"]}, {"_id": 0, "email": 1})
    if invitee:
        background_tasks.add_task(
            send_invitation_email,
            invitee["email"], current_user.name, project["name"], invitation["role"], config.FRONTEND_URL
        )
    return invitation
