from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
import logging

from hms.config.settings import settings
from hms.core.middleware import verify_token_middleware
from hms.db.base import get_engine
from hms.db.base import get_session_factory
from hms.db.session import set_global_session_factory

# -------------------------------------------------------------------------------------
# Logging
# -------------------------------------------------------------------------------------
logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application start-up & shutdown hooks."""
    # ------------------------------------------------------------------ start‑up -----
    logger.info("Application startup …")

    engine = None
    try:
        logger.info("Initializing Database Engine...")
        engine = await get_engine(str(settings.database_url), pool_pre_ping=True)
        app.state.engine = engine
        logger.info("DB engine ready and stored in app state.")

        session_factory = await get_session_factory(engine)
        app.state.session_factory = session_factory
        set_global_session_factory(session_factory)
        logger.info("DB session factory ready (globally accessible).")
    except Exception:
        logger.exception("Database initialization failed")
        if engine:
            await engine.dispose()
        raise

    yield

    # ------------------------------------------------ shutdown --------
    logger.info("Application shutdown …")
    try:
        await engine.dispose()
        logger.info("DB engine disposed")
    except Exception:
        logger.exception("Error disposing DB engine")

    logger.info("Shutdown complete")


# -------------------------------------------------------------------------------------
# FastAPI application instance
# -------------------------------------------------------------------------------------
app = FastAPI(title="Hospital Management System", lifespan=lifespan)

# CORS -------------------------------------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=[str(o) for o in settings.cors_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Session cookie / bearer token -> request.state.user
app.middleware("http")(verify_token_middleware)


# ----------------------------------------------------------------- health‑check -----
@app.get("/health")
async def health_check():
    return {"status": "ok"}


# ------------------------------------------------------------------- routes ---------
from hms.routes.auth.router import router as auth_router  # noqa: E402  (after app creation)
from hms.routes.user.router import router as user_router  # noqa: E402
from hms.routes.appointment.router import router as appointment_router  # noqa: E402
from hms.routes.billing.router import router as billing_router  # noqa: E402
from hms.routes.pharmacy.router import router as pharmacy_router  # noqa: E402
from hms.routes.clinical.router import router as clinical_router  # noqa: E402

app.include_router(auth_router)
app.include_router(user_router)
app.include_router(appointment_router)
app.include_router(billing_router)
app.include_router(pharmacy_router)
app.include_router(clinical_router)
