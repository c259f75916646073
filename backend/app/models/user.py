from pydantic import BaseModel, Field
from typing import Optional

ROLES = ("admin", "hr", "manager", "employee")
EMPLOYEE_STATUSES = ("active", "suspended", "terminated", "on_leave")
DOCUMENT_STATUSES = ("pending", "approved", "rejected")

EXTENSION_PATTERN = r"^\d{3,6}$"
PHONE_PATTERN = r"^\+?[0-9]\d{0,15}$"

# Fields an employee may change on their own profile
SELF_EDITABLE_FIELDS = (
    "firstName", "lastName", "email", "phone", "position", "address",
    "avatar", "emergencyContacts", "idFrontUrl", "idBackUrl",
)
# Never settable through bulk updates
BULK_PROTECTED_FIELDS = ("_id", "password", "role", "permissions", "employeeCode")


class EmergencyContact(BaseModel):
    name: str
    relationship: Optional[str] = None
    phone: Optional[str] = Field(None, pattern=PHONE_PATTERN)


class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postalCode: Optional[str] = None
    country: Optional[str] = None
