from pydantic import BaseModel, EmailStr, Field, ValidationInfo, field_validator
from typing import Literal, Optional

DepartmentLevel = Literal["board", "administration", "department", "sub_department", "team"]

ORG_CODE_PATTERN = r"^[A-Z]{2,5}-\d{2,4}$"


def _upper_code(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip().upper()
    return value or None


class DepartmentCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    organizationalCode: Optional[str] = Field(None, pattern=ORG_CODE_PATTERN)
    level: DepartmentLevel = "department"
    parentDepartment: Optional[str] = None
    head: Optional[str] = None
    contactEmail: Optional[EmailStr] = None
    isActive: bool = True

    @field_validator("organizationalCode", mode="before")
    @classmethod
    def normalize_code(cls, value):
        return _upper_code(value)

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Department name is required")
        return value


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    organizationalCode: Optional[str] = Field(None, pattern=ORG_CODE_PATTERN)
    level: Optional[DepartmentLevel] = None
    parentDepartment: Optional[str] = None
    head: Optional[str] = None
    contactEmail: Optional[EmailStr] = None
    isActive: Optional[bool] = None

    @field_validator("organizationalCode", mode="before")
    @classmethod
    def normalize_code(cls, value):
        return _upper_code(value)

    @field_validator("name", "level", "isActive")
    @classmethod
    def not_null(cls, value, info: ValidationInfo):
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value


class ManagerAssignment(BaseModel):
    managerId: Optional[str] = None
