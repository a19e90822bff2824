"""
Pydantic schemas for the design generation API (camelCase on the wire)
"""
import math
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel


class SpaceType(str, Enum):
    """Room types the editor supports"""

    bathroom = "bathroom"
    kitchen = "kitchen"
    laundry = "laundry"
    open_plan = "open-plan"


SPACE_TYPE_ALIASES = {"living-open-plan": SpaceType.open_plan}


def normalize_space_type(raw: Optional[str]) -> Optional[SpaceType]:
    value = (raw or "").strip().lower()
    if value in SPACE_TYPE_ALIASES:
        return SPACE_TYPE_ALIASES[value]
    try:
        return SpaceType(value)
    except ValueError:
        return None


def normalize_dimension(value: Optional[float], max_dimension: int) -> Optional[int]:
    """Round a client-reported pixel dimension; None when missing or out of range."""
    if value is None or not math.isfinite(value):
        return None
    rounded = int(round(value))
    if rounded <= 0 or rounded > max_dimension:
        return None
    return rounded


class DesignGenerationRequest(BaseModel):
    """Request body for POST /api/design/generate"""

    image_base64: str = Field(..., description="Source photo as a data URL or raw base64")
    space_type: str = Field(..., description="bathroom | kitchen | laundry | open-plan")
    design_style: Optional[str] = Field(None, max_length=120)
    color_tone: Optional[str] = Field(None, max_length=120)
    material_feel: Optional[str] = Field(None, max_length=120)
    fixture_finish: Optional[str] = Field(None, max_length=120)
    prompt: Optional[str] = None
    image_width: Optional[float] = None
    image_height: Optional[float] = None
    client_request_id: Optional[str] = None

    @field_validator("image_width", "image_height", mode="before")
    @classmethod
    def ignore_non_numeric_dimension(cls, value: Any) -> Any:
        # Dimensions are a hint; anything unusable is dropped rather than rejected
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return value

    @field_validator("design_style", "color_tone", "material_feel", "fixture_finish", "prompt", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    @field_validator("client_request_id", mode="before")
    @classmethod
    def trim_client_request_id(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip()[:80] or None
        return None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "forbid"


class DesignGenerationResponse(BaseModel):
    """Successful (accepted or best-effort) generation"""

    ok: bool = True
    request_id: str
    image_url: str
    description: str = ""
    remaining: int
    attempts: int
    layout_warning: bool = False
    layout_failure_reasons: List[str] = Field(default_factory=list)
    change_too_subtle: bool = False

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class QuotaStatusResponse(BaseModel):
    """Caller's daily generation allowance"""

    remaining: int
    limit: int
    used: int
