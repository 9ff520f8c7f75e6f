from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from models import TransactionType


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: TransactionType
    color: str = Field(default="", max_length=40)
    icon: str = Field(default="", max_length=40)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Category name cannot be empty")
        return value


class TransactionIn(BaseModel):
    amount: Decimal = Field(..., ge=0, max_digits=14, decimal_places=2)
    description: Optional[str] = Field(
        default=None,
        max_length=500,
        validation_alias=AliasChoices("note", "description"),
    )
    date: date
    type: TransactionType
    category_id: Optional[int] = None

    @field_validator("category_id")
    @classmethod
    def _zero_means_uncategorized(cls, value: Optional[int]) -> Optional[int]:
        # the web client sends 0 for "no category"
        if value is not None and value <= 0:
            return None
        return value


class LoginIn(BaseModel):
    username: str = Field(..., min_length=1, max_length=80)
    password: str = Field(..., min_length=1, max_length=200)
