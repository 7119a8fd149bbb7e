"""
storefront/schemas/principal.py
Roles and the authenticated Principal model.
"""
from typing import Literal, Optional
from pydantic import BaseModel, Field

Role = Literal["customer", "staff", "admin"]

STAFF_ROLES = ("staff", "admin")


class Principal(BaseModel):
    uid: str = Field(..., description="Firebase UID")
    role: Role = Field(..., description="customer | staff | admin")
    email: Optional[str] = Field(None, description="Email (if any)")
    display_name: Optional[str] = Field(None, description="Display name (if any)")

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES
