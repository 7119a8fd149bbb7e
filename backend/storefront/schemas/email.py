from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class EmailTemplateIn(BaseModel):
    subject: str = Field(..., min_length=1)
    html: str = Field(..., min_length=1)
    is_active: bool = True


class EmailTemplateOut(EmailTemplateIn):
    name: str
    is_default: bool = False
    updated_at: Optional[datetime] = None


class EmailTestBody(BaseModel):
    to: EmailStr
    template: Optional[str] = None
