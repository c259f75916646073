from pydantic import BaseModel, ConfigDict, EmailStr, Field, StrictBool, ValidationInfo, constr, field_validator
from typing import Any, Literal, Optional, List
from datetime import datetime
from app.models.user import (
    Address, EmergencyContact, EXTENSION_PATTERN, PHONE_PATTERN
)

Role = Literal["admin", "hr", "manager", "employee"]
EmployeeStatus = Literal["active", "suspended", "terminated", "on_leave"]


def _not_null(value, info: ValidationInfo):
    # Omit a field to leave it alone; an explicit null would erase it
    if value is None:
        raise ValueError(f"{info.field_name} cannot be null")
    return value


class EmployeeCreate(BaseModel):
    firstName: Optional[str] = Field(None, max_length=60)
    lastName: Optional[str] = Field(None, max_length=60)
    name: Optional[str] = None  # "First Last" accepted in place of the split fields
    username: Optional[constr(min_length=3, max_length=30)] = None
    email: EmailStr
    password: constr(min_length=6)
    extension: str = Field(..., pattern=EXTENSION_PATTERN)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    department: str
    position: Optional[str] = Field(None, max_length=100)
    role: Role = "employee"
    permissions: List[str] = []
    hireDate: Optional[datetime] = None
    salary: Optional[float] = Field(None, ge=0)
    status: EmployeeStatus = "active"
    isActive: bool = True
    reportsTo: Optional[str] = None
    skills: List[str] = []
    emergencyContacts: List[EmergencyContact] = []
    address: Optional[Address] = None
    avatar: Optional[str] = None
    idFrontUrl: Optional[str] = None
    idBackUrl: Optional[str] = None


class EmployeeUpdate(BaseModel):
    firstName: Optional[str] = Field(None, max_length=60)
    lastName: Optional[str] = Field(None, max_length=60)
    username: Optional[constr(min_length=3, max_length=30)] = None
    email: Optional[EmailStr] = None
    password: Optional[constr(min_length=6)] = None
    extension: Optional[str] = Field(None, pattern=EXTENSION_PATTERN)
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    department: Optional[str] = None
    position: Optional[str] = Field(None, max_length=100)
    role: Optional[Role] = None
    permissions: Optional[List[str]] = None
    hireDate: Optional[datetime] = None
    salary: Optional[float] = Field(None, ge=0)
    status: Optional[EmployeeStatus] = None
    isActive: Optional[bool] = None
    reportsTo: Optional[str] = None
    skills: Optional[List[str]] = None
    emergencyContacts: Optional[List[EmergencyContact]] = None
    address: Optional[Address] = None
    avatar: Optional[str] = None
    idFrontUrl: Optional[str] = None
    idBackUrl: Optional[str] = None

    @field_validator(
        "firstName", "lastName", "username", "email", "extension", "department",
        "role", "permissions", "status", "isActive", "skills", "emergencyContacts"
    )
    @classmethod
    def not_null(cls, value, info: ValidationInfo):
        return _not_null(value, info)


class BulkUpdateData(EmployeeUpdate):
    """Fields a bulk update may set on many employees at once."""
    model_config = ConfigDict(extra="forbid")

    isActive: Optional[StrictBool] = None


class ProfileUpdate(BaseModel):
    firstName: Optional[str] = Field(None, max_length=60)
    lastName: Optional[str] = Field(None, max_length=60)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    position: Optional[str] = Field(None, max_length=100)
    address: Optional[Address] = None
    avatar: Optional[str] = None
    emergencyContacts: Optional[List[EmergencyContact]] = None
    idFrontUrl: Optional[str] = None
    idBackUrl: Optional[str] = None
    currentPassword: Optional[str] = None
    newPassword: Optional[constr(min_length=6)] = None

    @field_validator("firstName", "lastName", "email", "emergencyContacts")
    @classmethod
    def not_null(cls, value, info: ValidationInfo):
        return _not_null(value, info)


class BulkEmployeeRequest(BaseModel):
    employeeIds: List[Any] = []


class BulkUpdateRequest(BulkEmployeeRequest):
    updateData: dict = {}


class BulkToggleRequest(BulkEmployeeRequest):
    # Checked by hand so "yes"/1 are rejected with 400 rather than coerced
    isActive: Any = None


class BulkAssignRequest(BulkEmployeeRequest):
    departmentId: Optional[str] = None


class DocumentReview(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
