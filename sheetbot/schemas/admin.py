from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator


class DirectMessageRequest(BaseModel):
    number: str = Field(min_length=1)
    message: str = ""
    urlMedia: Optional[str] = None

    @field_validator("number")
    @classmethod
    def strip_number(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("number must not be blank")
        return value


class FlowTriggerRequest(BaseModel):
    number: str = Field(min_length=1)
    name: str = ""


class BlacklistRequest(BaseModel):
    number: str = Field(min_length=1)
    intent: Literal["add", "remove"]


class AckResponse(BaseModel):
    status: str = "ok"
    message: str


class BlacklistResponse(BaseModel):
    status: str = "ok"
    number: str
    intent: str


class ScheduledStatsResponse(BaseModel):
    status: str = "ok"
    stats: dict


class ScheduledCheckResponse(BaseModel):
    status: str = "ok"
    message: str
    summary: Optional[dict] = None
