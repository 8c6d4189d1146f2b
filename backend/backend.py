import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from backend.enrollment_module import init_enrollment_module, router as enrollment_router
from backend.enrollment_module.config import settings
from backend.enrollment_module.storage import UPLOAD_URL_PREFIX, ensure_upload_dir

# Configure Logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    handlers=[logging.StreamHandler()]
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Initializing enrollment module...")
    init_enrollment_module()
    logger.info("Enrollment module initialized.")
    if settings.sms_configured:
        logger.info("SMS gateway configured. OTPs will be sent via SMS.")
    else:
        logger.info("SMS gateway NOT configured. OTPs will be shown in the logs.")

    yield
    logger.info("Shutting down...")


app = FastAPI(title="School Enrollment Portal API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.mount(UPLOAD_URL_PREFIX, StaticFiles(directory=ensure_upload_dir()), name="uploads")
app.include_router(enrollment_router)


@app.get("/")
def health():
    return {"status": "online", "sms_configured": settings.sms_configured}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.backend:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")), reload=True)
