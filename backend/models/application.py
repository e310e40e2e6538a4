"""
Firearm licence applications awaiting a SAPS decision
"""
import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Dict, Optional, Tuple
from pydantic import BaseModel, Field, ConfigDict, ValidationInfo, field_validator, model_validator
import uuid

from utils.holidays import sast_today


class SearchMethod(str, Enum):
    REF_ID = "REF_ID"          # reference number + ID/institution number
    SERIAL_REF = "SERIAL_REF"  # gun serial number + reference number
    ID_SERIAL = "ID_SERIAL"    # ID number + gun serial number


# (field, label, enquiry query parameter) pairs for each identification scheme
SEARCH_FIELDS: Dict[SearchMethod, Tuple[Tuple[str, str, str], ...]] = {
    SearchMethod.REF_ID: (
        ("application_ref_number", "Application Reference Number", "fref"),
        ("id_number", "ID/Institution Number", "frid"),
    ),
    SearchMethod.SERIAL_REF: (
        ("serial_number", "Gun Serial Number", "fserial"),
        ("gun_reference", "Reference Number", "fsref"),
    ),
    SearchMethod.ID_SERIAL: (
        ("id_number", "ID/Institution Number", "fid"),
        ("serial_number", "Gun Serial Number", "fiserial"),
    ),
}

_SA_ID = re.compile(r"^\d{13}$")


def is_valid_sa_id(id_number: str) -> bool:
    """13 digits, plausible birth month/day, Luhn check digit"""
    if not _SA_ID.match(id_number):
        return False
    month = int(id_number[2:4])
    day = int(id_number[4:6])
    if month < 1 or month > 12 or day < 1 or day > 31:
        return False
    digits = [int(c) for c in id_number]
    total = 0
    for i, digit in enumerate(digits[:12]):
        if i % 2 == 0:
            total += digit
        else:
            doubled = digit * 2
            total += doubled - 9 if doubled > 9 else doubled
    return (10 - total % 10) % 10 == digits[12]


class ApplicationForm(BaseModel):
    """
    Fields the owner fills in for an application. Only the selected search
    method's two fields are required.

    Pass ``context={"today": date}`` to model_validate to pin the date used
    for the not-in-the-future check.
    """
    model_config = ConfigDict(extra="ignore")
    search_method: SearchMethod = SearchMethod.REF_ID
    application_ref_number: str = ""
    id_number: str = ""
    serial_number: str = ""
    gun_reference: str = ""
    date_applied: date
    title: Optional[str] = None
    cost: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @field_validator("application_ref_number", "id_number", "serial_number", "gun_reference", mode="before")
    @classmethod
    def strip_identifiers(cls, v):
        if v is None:
            return ""
        # Non-text input is left for the str type to reject
        return v.strip() if isinstance(v, str) else v

    @field_validator("title", "notes")
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None

    @field_validator("id_number")
    @classmethod
    def valid_id_number(cls, v: str) -> str:
        if v and not is_valid_sa_id(v):
            raise ValueError("Please enter a valid 13-digit South African ID number")
        return v

    @field_validator("date_applied")
    @classmethod
    def not_in_future(cls, v: date, info: ValidationInfo) -> date:
        today = (info.context or {}).get("today") or sast_today()
        if v > today:
            raise ValueError("Date Applied cannot be in the future")
        return v

    @model_validator(mode="after")
    def required_for_search_method(self):
        for field, label, _ in SEARCH_FIELDS[self.search_method]:
            if not getattr(self, field):
                raise ValueError(f"{label} is required")
        return self

    def identity(self) -> Tuple[str, ...]:
        """The two values that identify this application for its search method"""
        return tuple(getattr(self, field) for field, _, _ in SEARCH_FIELDS[self.search_method])

    def query_params(self) -> Dict[str, str]:
        """Exactly the two enquiry parameters for the search method, never empty ones"""
        params = {}
        for field, _, param in SEARCH_FIELDS[self.search_method]:
            value = getattr(self, field).strip()
            if value:
                params[param] = value
        return params

    @property
    def reference(self) -> str:
        return self.application_ref_number or self.gun_reference or self.title or self.serial_number


class FirearmApplication(ApplicationForm):
    id: str = Field(default_factory=lambda: f"app_{uuid.uuid4().hex[:12]}")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def is_duplicate_of(self, other: ApplicationForm) -> bool:
        return self.search_method == other.search_method and self.identity() == other.identity()
