"""Pydantic schemas shared across the microservices."""
from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from .models import RoleEnum
from .timeutils import to_naive_utc


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    user_id: int
    username: str
    role: RoleEnum


class UserBase(BaseModel):
    name: str = Field(..., max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    department: Optional[str] = Field(None, max_length=100)
    role: RoleEnum = RoleEnum.PROFESSOR


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserRead(UserBase):
    id: int
    current_status: str
    current_room: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class UserSummary(BaseModel):
    """A professor as shown next to a booking or on the rooms board."""

    id: int
    name: str
    department: Optional[str] = None
    current_status: str
    current_room: Optional[str] = None

    model_config = {"from_attributes": True}


class RoomBase(BaseModel):
    room_number: str = Field(..., max_length=50)
    floor: int = 0
    room_type: Optional[str] = Field(None, max_length=50)


class RoomCreate(RoomBase):
    pass


class RoomSummary(RoomBase):
    id: int

    model_config = {"from_attributes": True}


class RoomRead(RoomBase):
    id: int
    is_occupied: bool
    current_occupant: Optional[UserSummary] = None

    model_config = {"from_attributes": True}


class BookingCreate(BaseModel):
    room_id: int
    purpose: str = Field(..., min_length=1, max_length=500)
    start_time: datetime
    end_time: datetime
    notes: Optional[str] = Field(None, max_length=2000)

    @field_validator("start_time", "end_time")
    @classmethod
    def _as_naive_utc(cls, value: datetime) -> datetime:
        return to_naive_utc(value)

    @model_validator(mode="after")
    def _check_window(self) -> "BookingCreate":
        if self.end_time <= self.start_time:
            raise ValueError("End time must be after start time")
        return self


class BookingRead(BaseModel):
    id: int
    user_id: int
    room_id: int
    room_number: str
    purpose: str
    notes: str
    start_time: datetime
    end_time: datetime
    status: str
    actual_end_time: Optional[datetime] = None
    duration: Optional[int] = None
    user: UserSummary
    room: RoomSummary

    model_config = {"from_attributes": True}


class HistoryPage(BaseModel):
    items: List[BookingRead]
    page: int
    page_size: int
    total: int
    total_pages: int


class EndBookingResult(BaseModel):
    booking_id: int
    duration: int


class PushKeys(BaseModel):
    p256dh: Optional[str] = None
    auth: Optional[str] = None


class PushSubscription(BaseModel):
    endpoint: Optional[str] = None
    keys: Optional[PushKeys] = None


class SubscriptionCreate(BaseModel):
    subscription: PushSubscription
