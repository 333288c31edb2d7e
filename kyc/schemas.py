from typing import Optional
from pydantic import BaseModel

from .records import KycStatus


class CredentialsIn(BaseModel):
    email: str
    password: str


class AdminSignupIn(CredentialsIn):
    invite_code: str


class SessionOut(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    user_id: str
    role: str


class VerifyIn(BaseModel):
    document_number: str


class SubmitIn(BaseModel):
    document_number: str
    address: str
    confirmed: bool = False


class ReviewIn(BaseModel):
    status: KycStatus
    admin_notes: Optional[str] = None
    failure_reason: Optional[str] = None
