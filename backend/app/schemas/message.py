from pydantic import BaseModel
from typing import Any, Literal, Optional

MessageRole = Literal["admin", "manager", "employee"]


class MessageCreate(BaseModel):
    # Validated in the service so REST and socket sends share one set of errors
    toRole: str = "admin"
    text: Optional[str] = None
    participants: Optional[Any] = None
    clientId: Optional[str] = None


class ChannelReadRequest(BaseModel):
    channelRole: Optional[str] = None
