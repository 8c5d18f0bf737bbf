from logging_config import setup_logging

# Initialize logging BEFORE anything else
setup_logging()

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from logging_config import get_logger
from fastapi import FastAPI, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from middleware import RequestLifecycleMiddleware
from routes import chats, invitations, notifications, projects, tasks, users
from routes.deps import verify_token
from realtime import PresenceRegistry, RealtimeGateway, RoomRegistry
from services import mentions
from services.events import DomainEventQueue, MessagePosted
from services.notifications import NotificationDispatcher
from automations import reminders
from database import db, ensure_indexes
from errors import CollabError
from config import config

logger = get_logger("app")

HOUR = 60 * 60
DAY = 24 * HOUR


def install_services(app: FastAPI) -> None:
    """Build the realtime and notification services on app.state and wire mention fan-out to the event queue."""
    events = DomainEventQueue()
    gateway = RealtimeGateway(db, PresenceRegistry(), RoomRegistry(), events, verify_token)
    dispatcher = NotificationDispatcher(db, gateway)

    async def ping_mentioned_users(event: MessagePosted):
        await mentions.notify_mentions(db, dispatcher, event.chat_id, event.sender_id, event.sender_name, event.content)

    events.subscribe(MessagePosted, ping_mentioned_users)

    app.state.events = events
    app.state.gateway = gateway
    app.state.dispatcher = dispatcher


def scheduled_jobs(app: FastAPI):
    dispatcher = app.state.dispatcher
    return [
        (HOUR, lambda: reminders.notify_approaching_deadlines(db, dispatcher), "deadline_reminders"),
        (DAY, lambda: reminders.notify_overdue_tasks(db, dispatcher), "overdue_reminders"),
        (DAY, lambda: reminders.cleanup_expired_invitations(db), "invitation_cleanup"),
        (DAY, lambda: reminders.sweep_read_notifications(db), "notification_sweep"),
    ]


@asynccontextmanager
async def lifespan(app: FastAPI):
    await ensure_indexes()
    app.state.events.start()

    jobs = []
    if config.SCHEDULER_ENABLED:
        for interval, job, name in scheduled_jobs(app):
            jobs.append(asyncio.create_task(reminders.run_periodically(interval, job, name=name)))
        logger.info(f"Scheduler started", extra={"data": {"jobs": len(jobs)}})

    yield

    for job in jobs:
        job.cancel()
    await asyncio.gather(*jobs, return_exceptions=True)
    await app.state.events.stop()


app = FastAPI(title="CollabHub API", lifespan=lifespan)
install_services(app)

# CORS remains here as it's a global setting
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL] if config.ENV == "production" else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Request lifecycle middleware (request ID, context vars, duration logging)
app.add_middleware(RequestLifecycleMiddleware)


@app.exception_handler(CollabError)
async def collab_error_handler(request: Request, exc: CollabError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# REGISTER ROUTERS
app.include_router(projects.router)
app.include_router(tasks.router)
app.include_router(invitations.router)
app.include_router(chats.router)
app.include_router(notifications.router)
app.include_router(users.router)

logger.info("All routers registered, CollabHub API ready")


@app.websocket("/ws")
async def realtime_endpoint(websocket: WebSocket, token: Optional[str] = Query(None)):
    await app.state.gateway.serve(websocket, token)


@app.get("/")
async def root():
    return {"status": "online", "message": "CollabHub API is running", "online_users": len(app.state.gateway.presence)}
