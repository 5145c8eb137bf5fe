from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from amounts import parse_amount


class UserIn(BaseModel):
    id: int = Field(..., gt=0)
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    birthday: date


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    birthday: date


class UserSummaryOut(BaseModel):
    first_name: str
    last_name: str
    id: int
    total: float


class CostIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=50)
    userid: int
    sum: Decimal
    date: Optional[datetime] = None

    @field_validator("sum", mode="before")
    @classmethod
    def _parse_sum(cls, value: object) -> Decimal:
        return parse_amount(value)

    @field_validator("category")
    @classmethod
    def _normalize_category(cls, value: str) -> str:
        return value.strip().lower()


class CostOut(BaseModel):
    description: str
    category: str
    userid: int
    sum: float
    date: datetime


class LogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    userid: int = Field(validation_alias="user_id")
    action: str
    timestamp: datetime
    details: Optional[str]
