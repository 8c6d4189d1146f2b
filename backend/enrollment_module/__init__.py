from sqlalchemy.orm import Session

from .database import Base, engine
from .routes import router
from .services import seed_default_admin, seed_site_defaults
from .storage import ensure_upload_dir


def init_enrollment_module() -> None:
    Base.metadata.create_all(bind=engine)
    ensure_upload_dir()
    db = Session(bind=engine)
    try:
        seed_default_admin(db)
        seed_site_defaults(db)
    finally:
        db.close()


__all__ = ["router", "init_enrollment_module"]
