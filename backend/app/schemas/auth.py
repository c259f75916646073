from pydantic import BaseModel, constr
from typing import Optional


class LoginRequest(BaseModel):
    # The login form sends one of these; identifier wins
    identifier: Optional[str] = None
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None

    def login_identifier(self) -> Optional[str]:
        value = self.identifier or self.username or self.email
        return value.strip() if value else None


class ChangePasswordRequest(BaseModel):
    currentPassword: str
    newPassword: constr(min_length=6)


class AdminPasswordReset(BaseModel):
    newPassword: constr(min_length=6)
