# edutest/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from edutest.api.deps import get_session_manager, shutdown_session_manager
from edutest.api.v1.endpoints import auth, health, sessions, submissions, tasks, tests, users
from edutest.core.config import settings
from edutest.core.logging_config import configure_logging
from edutest.db.session import init_db

logger = configure_logging()

app = FastAPI(title=settings.PROJECT_NAME)

origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
def on_startup():
    init_db()
    get_session_manager()
    logger.info(
        f"{settings.PROJECT_NAME} started (storage={settings.STORAGE_BACKEND}, "
        f"identity={settings.IDENTITY_PROVIDER})"
    )


@app.on_event("shutdown")
async def on_shutdown():
    await shutdown_session_manager()


if settings.STORAGE_BACKEND == "local":
    # uploaded files are served from the same process in local mode
    app.mount("/media", StaticFiles(directory=settings.MEDIA_DIR, check_dir=False), name="media")


for module in (auth, users, health, tests, sessions, submissions, tasks):
    app.include_router(module.router, prefix=settings.API_V1_PREFIX)
