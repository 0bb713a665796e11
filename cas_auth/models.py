from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel
from sqlmodel import SQLModel, Field


class CASTicket(SQLModel, table=True):
    ticket: str = Field(primary_key=True)  # ST-... as issued by the CAS server
    issued_at: datetime = Field(default_factory=datetime.now)
    revoked_at: Optional[datetime] = None


class SessionInfo(BaseModel):
    """
    What the current session knows about its CAS user.
    user_id is None when nobody is logged in.
    """
    user_id: Optional[str] = None
    user_info: Optional[Any] = None
