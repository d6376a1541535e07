from contextlib import asynccontextmanager
from typing import Any, List

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from common.board_feed import RoomsBoardSubscriber
from common.cache import ROOMS_BOARD_KEY, rooms_board_cache
from common.config import get_settings
from common.database import Base, engine, get_db
from common.dependencies import allow_roles, get_current_active_user
from common.logging_middleware import add_audit_middleware
from common.models import RoleEnum, Room, User
from common.occupancy import rooms_snapshot
from common.rate_limit import apply_rate_limiter, limiter
from common.schemas import RoomCreate, RoomRead

settings = get_settings()


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    subscriber = None
    if settings.notifier_backend == "rabbitmq":
        subscriber = RoomsBoardSubscriber(settings.rabbitmq_url, settings.events_exchange)
        subscriber.start()
    fastapi_app.state.board_subscriber = subscriber
    try:
        yield
    finally:
        if subscriber is not None:
            subscriber.stop()


def _board_cache_usable(request: Request) -> bool:
    subscriber = getattr(request.app.state, "board_subscriber", None)
    return subscriber is None or subscriber.is_listening


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Rooms Service", version="0.3.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    add_audit_middleware(fastapi_app, "rooms")
    return fastapi_app


app = create_app()


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "rooms"}


@app.post("/rooms", response_model=RoomRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_room(
    request: Request,
    room_in: RoomCreate,
    _: User = Depends(allow_roles(RoleEnum.ADMIN)),
    db: Session = Depends(get_db),
) -> Room:
    room = Room(**room_in.model_dump())
    db.add(room)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Room number already exists")
    db.refresh(room)
    rooms_board_cache.pop(ROOMS_BOARD_KEY)
    return room


@app.get("/rooms", response_model=List[RoomRead])
@limiter.limit("60/minute")
def rooms_board(
    request: Request,
    force_refresh: bool = False,
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> List[Any]:
    """Every room with its occupant.

    Served from the board cache, which roomsUpdated events keep current. While
    the events subscription is down the board is read from the database.
    """
    use_cache = _board_cache_usable(request)
    if use_cache and not force_refresh:
        cached = rooms_board_cache.get(ROOMS_BOARD_KEY)
        if cached is not None:
            return cached
    board = [RoomRead.model_validate(room).model_dump(mode="json") for room in rooms_snapshot(db)]
    if use_cache:
        rooms_board_cache.set(ROOMS_BOARD_KEY, board)
    return board


@app.get("/rooms/{room_id}", response_model=RoomRead)
@limiter.limit("60/minute")
def get_room(
    request: Request,
    room_id: int,
    _: User = Depends(get_current_active_user),
    db: Session = Depends(get_db),
) -> Room:
    room = db.get(Room, room_id)
    if not room:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Room not found")
    return room
