from fastapi import APIRouter, Body, Depends, HTTPException
from pymongo.errors import DuplicateKeyError
from models import utc_now
from models.project import ProjectModel, ProjectUpdate, ProjectMemberModel, ProjectMemberCreate, ProjectMemberUpdate
from models.task import TaskModel
from models.user import UserModel
from routes.deps import get_current_user, get_db, get_gateway, get_dispatcher, get_project_membership, require_project_role
from realtime.rooms import ChatRoom, ProjectRoom
from services import chat_store, membership_sync
from constants import NotificationTypes, ProjectRoles
from logging_config import get_logger

router = APIRouter(prefix="/api/projects", tags=["Projects"])
logger = get_logger("projects")

NO_ID = {"_id": 0}


# --- HELPERS ---

async def sync_project_chat_live(db, gateway, project_id: str):
    """Sync the project chat after a membership change and move live connections accordingly."""
    result = await membership_sync.sync_project_chat(db, project_id)
    gateway.apply_sync(result)
    return result


async def add_project_member(db, project_id: str, user_id: str, role: str) -> dict:
    member = ProjectMemberModel(project_id=project_id, user_id=user_id, role=role)
    member_data = member.model_dump()
    try:
        await db.project_members.insert_one(member_data)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="User is already a member of this project")
    member_data.pop("_id", None)
    return member_data


async def delete_task_cascade(db, gateway, task_id: str):
    chat = await chat_store.find_chat_for_task(db, task_id)
    if chat:
        await chat_store.delete_chat(db, chat["id"])
        gateway.close_room(ChatRoom(chat["id"]))
    await db.task_members.delete_many({"task_id": task_id})
    await db.tasks.delete_one({"id": task_id})


# --- CORE ENDPOINTS ---

@router.post("", status_code=201)
async def create_project(
    project: ProjectModel = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    """CREATE: Save project; the creator becomes its owner"""
    project.created_by = current_user.id
    project_data = project.model_dump()
    await db.projects.insert_one(project_data)
    project_data.pop("_id", None)

    await add_project_member(db, project.id, current_user.id, ProjectRoles.OWNER)
    gateway.join_user(current_user.id, ProjectRoom(project.id))

    logger.info(f"Project created", extra={"data": {"project_id": project.id, "name": project.name}})
    return project_data


@router.get("")
async def list_projects(current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    """Projects the current user is a member of"""
    memberships = await db.project_members.find({"user_id": current_user.id}).to_list(None)
    roles = {m["project_id"]: m["role"] for m in memberships}
    projects = await db.projects.find({"id": {"$in": list(roles)}}, NO_ID).sort("updated_at", -1).to_list(None)
    for project in projects:
        project["my_role"] = roles.get(project["id"])
    return projects


@router.get("/{project_id}")
async def get_project(project_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    membership = await get_project_membership(db, project_id, current_user.id)
    project = await db.projects.find_one({"id": project_id}, NO_ID)
    project["my_role"] = membership["role"]
    return project


@router.patch("/{project_id}")
async def update_project(
    project_id: str,
    updates: ProjectUpdate = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db)
):
    membership = await get_project_membership(db, project_id, current_user.id)
    require_project_role(membership, *ProjectRoles.MANAGERS)

    changes = updates.model_dump(exclude_unset=True, exclude_none=True)
    if changes:
        changes["updated_at"] = utc_now()
        await db.projects.update_one({"id": project_id}, {"$set": changes})
    return await db.projects.find_one({"id": project_id}, NO_ID)


@router.delete("/{project_id}")
async def delete_project(
    project_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    """DELETE: Owner only. Removes tasks, chats, memberships and invitations with the project"""
    membership = await get_project_membership(db, project_id, current_user.id)
    require_project_role(membership, ProjectRoles.OWNER)

    tasks = await db.tasks.find({"project_id": project_id}, {"id": 1}).to_list(None)
    for task in tasks:
        await delete_task_cascade(db, gateway, task["id"])

    chat = await chat_store.find_chat_for_project(db, project_id)
    if chat:
        await chat_store.delete_chat(db, chat["id"])
        gateway.close_room(ChatRoom(chat["id"]))

    await db.project_invitations.delete_many({"project_id": project_id})
    await db.project_members.delete_many({"project_id": project_id})
    await db.projects.delete_one({"id": project_id})
    gateway.close_room(ProjectRoom(project_id))

    logger.info(f"Project deleted", extra={"data": {"project_id": project_id, "tasks": len(tasks)}})
    return {"message": "Project deleted successfully"}


# --- MEMBERS ---

@router.get("/{project_id}/members")
async def list_project_members(project_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    await get_project_membership(db, project_id, current_user.id)
    members = await db.project_members.find({"project_id": project_id}, NO_ID).sort("joined_at", 1).to_list(None)
    users = await db.users.find(
        {"id": {"$in": [m["user_id"] for m in members]}},
        {"_id": 0, "id": 1, "name": 1, "email": 1, "avatar": 1}
    ).to_list(None)
    by_id = {u["id"]: u for u in users}
    for member in members:
        member["user"] = by_id.get(member["user_id"])
    return members


@router.post("/{project_id}/members", status_code=201)
async def add_member(
    project_id: str,
    body: ProjectMemberCreate = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
    dispatcher=Depends(get_dispatcher)
):
    membership = await get_project_membership(db, project_id, current_user.id)
    require_project_role(membership, *ProjectRoles.MANAGERS)

    if not await db.users.find_one({"id": body.user_id}):
        raise HTTPException(status_code=404, detail="User not found")

    member = await add_project_member(db, project_id, body.user_id, body.role)
    await sync_project_chat_live(db, gateway, project_id)
    gateway.join_user(body.user_id, ProjectRoom(project_id))

    project = await db.projects.find_one({"id": project_id})
    try:
        await dispatcher.create_notification(
            body.user_id,
            NotificationTypes.PROJECT_MEMBER_ADDED,
            "Added to Project",
            f"{current_user.name} added you to {project['name']}",
            related_id=project_id,
            metadata={"project_id": project_id, "project_name": project["name"], "added_by": current_user.id},
        )
    except Exception as e:
        logger.error(f"Failed to notify added member: {e}", extra={"data": {"project_id": project_id, "user_id": body.user_id}})

    logger.info(f"Project member added", extra={"data": {"project_id": project_id, "user_id": body.user_id, "role": body.role}})
    return member


@router.patch("/{project_id}/members/{user_id}")
async def update_member(
    project_id: str,
    user_id: str,
    body: ProjectMemberUpdate = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db)
):
    membership = await get_project_membership(db, project_id, current_user.id)
    require_project_role(membership, *ProjectRoles.MANAGERS)

    target = await db.project_members.find_one({"project_id": project_id, "user_id": user_id})
    if not target:
        raise HTTPException(status_code=404, detail="Project member not found")
    if target["role"] == ProjectRoles.OWNER:
        raise HTTPException(status_code=400, detail="The project owner's role cannot be changed")

    await db.project_members.update_one({"project_id": project_id, "user_id": user_id}, {"$set": {"role": body.role}})
    return await db.project_members.find_one({"project_id": project_id, "user_id": user_id}, NO_ID)


@router.delete("/{project_id}/members/{user_id}")
async def remove_member(
    project_id: str,
    user_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    """Managers remove anyone but the owner; members may remove themselves"""
    membership = await get_project_membership(db, project_id, current_user.id)
    if user_id != current_user.id:
        require_project_role(membership, *ProjectRoles.MANAGERS)

    target = await db.project_members.find_one({"project_id": project_id, "user_id": user_id})
    if not target:
        raise HTTPException(status_code=404, detail="Project member not found")
    if target["role"] == ProjectRoles.OWNER:
        raise HTTPException(status_code=400, detail="The project owner cannot be removed")

    await db.project_members.delete_one({"project_id": project_id, "user_id": user_id})
    await sync_project_chat_live(db, gateway, project_id)
    gateway.leave_user(user_id, ProjectRoom(project_id))

    logger.info(f"Project member removed", extra={"data": {"project_id": project_id, "user_id": user_id}})
    return {"message": "Project member removed successfully"}


# --- PROJECT CHAT ---

@router.get("/{project_id}/chat")
async def get_project_chat(
    project_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    """Get (creating on first access) the project chat, with membership synced"""
    await get_project_membership(db, project_id, current_user.id)
    chat, created = await chat_store.get_or_create_chat_for_project(db, project_id)
    if created or not await chat_store.is_member(db, chat["id"], current_user.id):
        # New chat, or one that predates current membership
        await sync_project_chat_live(db, gateway, project_id)
    chat["display_name"] = await chat_store.resolve_display_name(db, chat, current_user.id)
    return chat


@router.post("/{project_id}/chat/sync")
async def sync_project_chat(
    project_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    await get_project_membership(db, project_id, current_user.id)
    result = await sync_project_chat_live(db, gateway, project_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Project chat not found")
    return {"message": "Project chat members synced successfully", "added": result.added, "removed": result.removed}


# --- PROJECT TASKS ---

@router.get("/{project_id}/tasks")
async def list_project_tasks(project_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    await get_project_membership(db, project_id, current_user.id)
    return await db.tasks.find({"project_id": project_id}, NO_ID).sort("created_at", -1).to_list(None)


@router.post("/{project_id}/tasks", status_code=201)
async def create_project_task(
    project_id: str,
    task: TaskModel = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db)
):
    membership = await get_project_membership(db, project_id, current_user.id)
    if membership["role"] == ProjectRoles.VIEWER:
        raise HTTPException(status_code=403, detail="Viewers cannot create tasks")

    task.project_id = project_id
    task.created_by = current_user.id
    task_data = task.model_dump()
    await db.tasks.insert_one(task_data)
    task_data.pop("_id", None)

    logger.info(f"Task created", extra={"data": {"task_id": task.id, "title": task.title, "project_id": project_id}})
    return task_data
