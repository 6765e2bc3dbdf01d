import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.core.settings import settings
from backend.routers import (
    auth,
    inbox,
    lessons,
    live,
    media,
    moderation,
    polls,
    rooms,
    study_groups,
)
from chatsync.errors import ChatSyncError

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Live Class Chat API",
    description="Real-time class, direct and study-group chat",
    version="0.1.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ChatSyncError)
async def chat_sync_error_handler(request: Request, exc: ChatSyncError) -> JSONResponse:
    # Domain errors carry their own status; the message becomes the detail.
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


app.include_router(auth.router)
app.include_router(lessons.router)
app.include_router(rooms.router)
app.include_router(inbox.router)
app.include_router(study_groups.router)
app.include_router(moderation.router)
app.include_router(polls.router)
app.include_router(media.router)
app.include_router(live.router)


@app.get("/health")
def health_check() -> dict:
    return {"status": "ok"}
