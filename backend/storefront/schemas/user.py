"""
storefront/schemas/user.py - Staff account schemas.

Staff accounts live in Firebase Auth; `users/{uid}` mirrors the role so the
notification fan-out can find every staff member without listing Auth users.
"""
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from storefront.schemas.principal import Role


class StaffOut(BaseModel):
    id: str
    name: Optional[str] = Field(None, description="Full name of the user")
    email: Optional[EmailStr] = None
    role: Role
    created_at: Optional[datetime] = None


class RoleUpdate(BaseModel):
    role: Role
