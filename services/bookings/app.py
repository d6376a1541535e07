from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from sqlalchemy.orm import Session

from common.booking_service import BookingService
from common.config import get_settings
from common.database import Base, SessionLocal, engine, get_db
from common.dependencies import allow_roles, get_booking_service, get_current_active_user
from common.error_handlers import apply_error_handlers
from common.events import EventDispatcher
from common.logging_middleware import add_audit_middleware
from common.models import RoleEnum, User
from common.notifier import build_notifier
from common.occupancy import reconcile_occupancy
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import BookingCreate, BookingRead, EndBookingResult, HistoryPage

settings = get_settings()


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    if settings.reconcile_on_startup:
        with SessionLocal() as db:
            reconcile_occupancy(db)
    dispatcher = EventDispatcher(build_notifier(settings, SessionLocal))
    dispatcher.start()
    fastapi_app.state.dispatcher = dispatcher
    fastapi_app.state.booking_service = BookingService(settings, dispatcher)
    try:
        yield
    finally:
        dispatcher.flush()
        dispatcher.stop()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Bookings Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    apply_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    Instrumentator().instrument(fastapi_app).expose(fastapi_app)
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


@app.post("/bookings", response_model=BookingRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking(
    request: Request,
    booking_in: BookingCreate,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    service: BookingService = Depends(get_booking_service),
) -> BookingRead:
    return service.create_booking(
        db,
        user_id=current_user.id,
        room_id=booking_in.room_id,
        purpose=booking_in.purpose,
        start_time=booking_in.start_time,
        end_time=booking_in.end_time,
        notes=booking_in.notes,
    )


@app.get("/bookings/active", response_model=List[BookingRead])
@limiter.limit("60/minute")
def list_active_bookings(
    request: Request,
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    service: BookingService = Depends(get_booking_service),
) -> List[BookingRead]:
    return service.list_active_bookings(db)


@app.get("/bookings/me", response_model=List[BookingRead])
@limiter.limit("60/minute")
def list_my_bookings(
    request: Request,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    service: BookingService = Depends(get_booking_service),
) -> List[BookingRead]:
    return service.list_user_bookings(db, current_user.id)


@app.get("/bookings/history", response_model=HistoryPage)
@limiter.limit("30/minute")
def booking_history(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.history_default_page_size, ge=1),
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    service: BookingService = Depends(get_booking_service),
) -> HistoryPage:
    return service.list_history(db, page=page, page_size=limit)


@app.put("/bookings/{booking_id}/end", response_model=EndBookingResult)
@limiter.limit("20/minute")
def end_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
    service: BookingService = Depends(get_booking_service),
) -> EndBookingResult:
    return service.end_booking(db, booking_id, current_user.id)


@app.put("/bookings/{booking_id}/force-end", response_model=EndBookingResult)
@limiter.limit("20/minute")
def force_end_booking(
    request: Request,
    booking_id: int,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
    service: BookingService = Depends(get_booking_service),
) -> EndBookingResult:
    return service.force_end_booking(db, booking_id)
