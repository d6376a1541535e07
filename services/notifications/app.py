from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import get_current_active_user
from common.logging_middleware import add_audit_middleware
from common.models import NotificationSubscription, User
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import PushSubscription, SubscriptionCreate

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Notifications Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "notifications")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "notifications"}


def _find_subscription(db: Session, user_id: int) -> Optional[NotificationSubscription]:
    return db.query(NotificationSubscription).filter(NotificationSubscription.user_id == user_id).first()


def _apply(record: NotificationSubscription, payload: PushSubscription) -> None:
    keys = payload.keys
    record.endpoint = payload.endpoint
    record.p256dh = keys.p256dh if keys else None
    record.auth = keys.auth if keys else None


@app.post("/notifications/subscribe", status_code=status.HTTP_200_OK)
@limiter.limit("10/minute")
def subscribe(
    request: Request,
    subscription_in: SubscriptionCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    """Store the caller's push subscription, replacing any earlier one."""
    record = _find_subscription(db, current_user.id)
    if record is None:
        record = NotificationSubscription(user_id=current_user.id)
        db.add(record)
    _apply(record, subscription_in.subscription)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the row first; update that one instead.
        db.rollback()
        record = _find_subscription(db, current_user.id)
        if record is None:
            raise
        _apply(record, subscription_in.subscription)
        db.commit()
    return {"message": "Subscription saved"}


@app.get("/notifications/vapid-public-key")
def vapid_public_key() -> dict[str, str]:
    return {"public_key": settings.vapid_public_key}
