"""
Domain enums and pydantic models for backer CSV rows.
"""

import math
import re
from enum import Enum
from typing import List

from pydantic import BaseModel, field_validator

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
NUMERIC_STRIP_PATTERN = re.compile(r"[^0-9.\-]")

COLLECTED_MARKERS = {"collected", "paid", "completed", "shipped"}

# Largest values the store columns hold (INTEGER qty, NUMERIC(12, 2) amounts)
MAX_QUANTITY = 2_147_483_647
MAX_AMOUNT = 1e10


class Platform(str, Enum):
    KICKSTARTER = "KICKSTARTER"
    INDIEGOGO = "INDIEGOGO"


class UploadStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SurveyStatus(str, Enum):
    COLLECTED = "COLLECTED"
    ERRORED = "ERRORED"


def extract_number(value: str) -> float:
    """Pull a number out of free text such as ``"$1,250.00"``; 0 when none."""
    cleaned = NUMERIC_STRIP_PATTERN.sub("", value or "")
    try:
        number = float(cleaned)
    except ValueError:
        return 0.0
    return number if math.isfinite(number) else 0.0


def parse_survey_status(status: str) -> SurveyStatus:
    """Collapse a platform's payment status into collected or errored."""
    if (status or "").strip().lower() in COLLECTED_MARKERS:
        return SurveyStatus.COLLECTED
    return SurveyStatus.ERRORED


class ProductEntry(BaseModel):
    """A product name and quantity read from a backer row."""

    name: str
    qty: float

    @field_validator('name')
    @classmethod
    def validate_name(cls, v):
        if not v or not v.strip():
            raise ValueError('Product name is required')
        return v.strip()

    @field_validator('qty')
    @classmethod
    def validate_qty(cls, v):
        if not math.isfinite(v) or v <= 0 or v != int(v):
            raise ValueError('Quantity must be a positive whole number')
        if v > MAX_QUANTITY:
            raise ValueError(f"Quantity cannot exceed {MAX_QUANTITY}")
        return v


class BackerRow(BaseModel):
    """Pydantic model for one transformed backer row."""

    reward_id: str
    pledge_name: str
    survey_status: str
    bonus_support: str = "0"
    price: str
    country: str
    backer_name: str
    backer_email: str
    products: List[ProductEntry] = []

    @field_validator('reward_id', 'pledge_name', 'survey_status', 'price', 'country', 'backer_name')
    @classmethod
    def validate_required(cls, v):
        if not v or not v.strip():
            raise ValueError('Required field cannot be empty')
        return v.strip()

    @field_validator('backer_email')
    @classmethod
    def validate_email(cls, v):
        if not EMAIL_PATTERN.match((v or "").strip()):
            raise ValueError('Invalid email address')
        return v.strip()

    @field_validator('bonus_support')
    @classmethod
    def validate_bonus_support(cls, v):
        if extract_number(v) < 0:
            raise ValueError('Cannot be negative')
        if extract_number(v) >= MAX_AMOUNT:
            raise ValueError("Amount is too large")
        return v

    @field_validator('price')
    @classmethod
    def validate_price(cls, v):
        if extract_number(v) <= 0:
            raise ValueError('Must be a positive number')
        if extract_number(v) >= MAX_AMOUNT:
            raise ValueError("Amount is too large")
        return v

    @property
    def price_amount(self) -> float:
        return extract_number(self.price)

    @property
    def bonus_support_amount(self) -> float:
        return extract_number(self.bonus_support)

    @property
    def status(self) -> SurveyStatus:
        return parse_survey_status(self.survey_status)
