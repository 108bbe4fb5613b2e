import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

from canvaschat.config import DEFAULT_SESSION_SECRET, settings
from canvaschat.database import engine, Base
from canvaschat.routers import auth, chat
from canvaschat.routers.auth import CurrentUser, get_optional_user
from canvaschat.schemas import HealthOut, UserProfileOut
from canvaschat.services.image_generation import ImageGenerator
from canvaschat.services.text_generation import TextGenerator

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if os.environ.get("CANVASCHAT_SKIP_CREATE_TABLES") != "1":
        Base.metadata.create_all(bind=engine)
    if settings.session_secret == DEFAULT_SESSION_SECRET:
        logger.warning("SESSION_SECRET is not set; session cookies are signed with the default key")
    # Adapters are built once and shared read-only across requests
    app.state.text_generator = TextGenerator.from_settings(settings)
    app.state.image_generator = ImageGenerator.from_settings(settings)
    yield


app = FastAPI(title="Canvaschat API", version="0.1.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(
    SessionMiddleware,
    secret_key=settings.session_secret,
    same_site="lax",
    max_age=60 * 60 * 24 * 7,
)

app.include_router(auth.router)
app.include_router(chat.router)


@app.get("/")
def root():
    return {"app": "canvaschat", "version": "0.1.0"}


@app.get("/api/health", response_model=HealthOut)
def health():
    return HealthOut(status="ok", timestamp=datetime.now(timezone.utc))


@app.get("/api/user/profile", response_model=UserProfileOut)
def user_profile(user: CurrentUser | None = Depends(get_optional_user)):
    return UserProfileOut(
        user=user.model_dump() if user else None,
        authenticated=user is not None,
    )
