from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


class EventCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    location: str = Field(min_length=1, max_length=300)
    date: Optional[datetime] = None
    time: str = ""
    description: str = ""
    capacity: int = Field(default=0, ge=0)
    price: Optional[float] = Field(default=None, ge=0)
    currency: str = "USD"
    status: str = "published"  # draft | published


class EventStatusUpdate(BaseModel):
    status: str  # published | postponed | cancelled
    message: str = ""
    newDate: Optional[datetime] = None
    newTime: str = ""
    newLocation: str = ""


class EventUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    date: Optional[datetime] = None
    time: Optional[str] = None
    location: Optional[str] = Field(default=None, min_length=1, max_length=300)
    capacity: Optional[int] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = None


class EventNotify(BaseModel):
    type: Literal["postponed", "cancelled"]
    message: str = Field(min_length=1, max_length=2000)
    newDate: Optional[datetime] = None
    newTime: str = ""
