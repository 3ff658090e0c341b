# app/schemas/announcement.py
from pydantic import BaseModel, field_validator
from typing import Optional


class AnnouncementSignupCreate(BaseModel):
    org_id: str
    event_id: int
    email: str
    first_name: Optional[str] = None
    marketing_consent: bool = True

    @field_validator('email')
    @classmethod
    def normalize_email(cls, v: str) -> str:
        v = v.strip().lower()
        if "@" not in v:
            raise ValueError("Invalid email address")
        return v


class AnnouncementSignupResponse(BaseModel):
    signup_id: int
    already_signed_up: bool
    confirmation_sent: bool


class UnsubscribeResponse(BaseModel):
    type: str
    unsubscribed: int
