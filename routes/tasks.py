from fastapi import APIRouter, Body, Depends, HTTPException
from pymongo.errors import DuplicateKeyError
from models import utc_now
from models.task import TaskUpdate, TaskMemberModel, TaskMemberCreate
from models.user import UserModel
from routes.deps import get_current_user, get_db, get_gateway, get_dispatcher, get_project_membership
from routes.projects import delete_task_cascade
from services import chat_store, membership_sync
from constants import NotificationTypes, ProjectRoles
from logging_config import get_logger

router = APIRouter(prefix="/api/tasks", tags=["Tasks"])
logger = get_logger("tasks")

NO_ID = {"_id": 0}


# --- HELPERS ---

async def get_task_for_member(db, task_id: str, user_id: str):
    """Task must exist and the user must belong to its project. Returns (task, project membership)."""
    task = await db.tasks.find_one({"id": task_id}, NO_ID)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    membership = await get_project_membership(db, task["project_id"], user_id)
    return task, membership


async def sync_task_chat_live(db, gateway, task_id: str):
    result = await membership_sync.sync_task_chat(db, task_id)
    gateway.apply_sync(result)
    return result


# --- ENDPOINTS ---

@router.get("/{task_id}")
async def get_task(task_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    task, _ = await get_task_for_member(db, task_id, current_user.id)
    return task


@router.patch("/{task_id}")
async def update_task(
    task_id: str,
    updates: TaskUpdate = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db)
):
    task, membership = await get_task_for_member(db, task_id, current_user.id)
    if membership["role"] == ProjectRoles.VIEWER:
        raise HTTPException(status_code=403, detail="Viewers cannot edit tasks")

    changes = updates.model_dump(exclude_unset=True)
    if changes:
        changes["updated_at"] = utc_now()
        await db.tasks.update_one({"id": task_id}, {"$set": changes})
        logger.info(f"Task updated", extra={"data": {"task_id": task_id, "fields": list(changes)}})
    return await db.tasks.find_one({"id": task_id}, NO_ID)


@router.delete("/{task_id}")
async def delete_task(
    task_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    task, membership = await get_task_for_member(db, task_id, current_user.id)
    if task.get("created_by") != current_user.id and membership["role"] not in ProjectRoles.MANAGERS:
        raise HTTPException(status_code=403, detail="Only the creator or a project manager can delete this task")
    await delete_task_cascade(db, gateway, task_id)
    logger.info(f"Task deleted", extra={"data": {"task_id": task_id}})
    return {"message": "Task deleted successfully"}


# --- MEMBERS ---

@router.get("/{task_id}/members")
async def list_task_members(task_id: str, current_user: UserModel = Depends(get_current_user), db=Depends(get_db)):
    await get_task_for_member(db, task_id, current_user.id)
    return await db.task_members.find({"task_id": task_id}, NO_ID).sort("joined_at", 1).to_list(None)


@router.post("/{task_id}/members", status_code=201)
async def add_task_member(
    task_id: str,
    body: TaskMemberCreate = Body(...),
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway),
    dispatcher=Depends(get_dispatcher)
):
    task, membership = await get_task_for_member(db, task_id, current_user.id)
    if membership["role"] == ProjectRoles.VIEWER:
        raise HTTPException(status_code=403, detail="Viewers cannot assign tasks")

    if not await db.project_members.find_one({"project_id": task["project_id"], "user_id": body.user_id}):
        raise HTTPException(status_code=400, detail="User must be a project member to be assigned to this task")

    member = TaskMemberModel(task_id=task_id, user_id=body.user_id, role=body.role, assigned_by=current_user.id)
    member_data = member.model_dump()
    try:
        await db.task_members.insert_one(member_data)
    except DuplicateKeyError:
        raise HTTPException(status_code=409, detail="User is already assigned to this task")
    member_data.pop("_id", None)

    await sync_task_chat_live(db, gateway, task_id)

    if body.user_id != current_user.id:
        try:
            await dispatcher.create_notification(
                body.user_id,
                NotificationTypes.TASK_ASSIGNED,
                "New Assignment",
                f"{current_user.name} assigned you to task: {task['title']}",
                related_id=task_id,
                metadata={"task_id": task_id, "project_id": task["project_id"], "assigner_id": current_user.id, "role": body.role},
            )
        except Exception as e:
            logger.error(f"Failed to notify task assignee: {e}", extra={"data": {"task_id": task_id, "user_id": body.user_id}})

    logger.info(f"Task member added", extra={"data": {"task_id": task_id, "user_id": body.user_id}})
    return member_data


@router.delete("/{task_id}/members/{user_id}")
async def remove_task_member(
    task_id: str,
    user_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    _, membership = await get_task_for_member(db, task_id, current_user.id)
    if user_id != current_user.id and membership["role"] == ProjectRoles.VIEWER:
        raise HTTPException(status_code=403, detail="Viewers cannot unassign others")

    result = await db.task_members.delete_one({"task_id": task_id, "user_id": user_id})
    if result.deleted_count == 0:
        raise HTTPException(status_code=404, detail="Task member not found")
    await sync_task_chat_live(db, gateway, task_id)
    return {"message": "Task member removed successfully"}


# --- TASK CHAT ---

@router.get("/{task_id}/chat")
async def get_task_chat(
    task_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    """Get (creating on first access) the task chat, with membership synced"""
    await get_task_for_member(db, task_id, current_user.id)
    chat, created = await chat_store.get_or_create_chat_for_task(db, task_id)
    if created or not await chat_store.is_member(db, chat["id"], current_user.id):
        await sync_task_chat_live(db, gateway, task_id)
    chat["display_name"] = await chat_store.resolve_display_name(db, chat, current_user.id)
    return chat


@router.post("/{task_id}/chat/sync")
async def sync_task_chat(
    task_id: str,
    current_user: UserModel = Depends(get_current_user),
    db=Depends(get_db),
    gateway=Depends(get_gateway)
):
    await get_task_for_member(db, task_id, current_user.id)
    result = await sync_task_chat_live(db, gateway, task_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Task chat not found")
    return {"message": "Task chat members synced successfully", "added": result.added, "removed": result.removed}
