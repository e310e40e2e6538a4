"""
Firearm licence records and the licence section catalog
"""
from datetime import date, datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator
import uuid


class LicenseSection(BaseModel):
    value: str
    label: str
    duration_years: int


# Firearms Control Act licence sections and how long each licence is valid
SECTION_CATALOG = {
    s.value: s for s in [
        LicenseSection(value="section_13", label="Section 13 - Self-defence", duration_years=5),
        LicenseSection(value="section_14", label="Section 14 - Restricted self-defence", duration_years=2),
        LicenseSection(value="section_15", label="Section 15 - Occasional hunting/sport", duration_years=10),
        LicenseSection(value="section_16", label="Section 16 - Dedicated hunting/sport", duration_years=10),
        LicenseSection(value="section_17", label="Section 17 - Private collection", duration_years=10),
        LicenseSection(value="section_19", label="Section 19 - Public collection", duration_years=10),
        LicenseSection(value="section_20_hunting", label="Section 20 - Business (hunting)", duration_years=5),
        LicenseSection(value="section_20_other", label="Section 20 - Business (other)", duration_years=2),
        LicenseSection(value="section_20_theatre", label="Section 20 - Theatre/film/TV", duration_years=2),
        LicenseSection(value="section_20_security", label="Section 20 - Security business", duration_years=2),
        LicenseSection(value="section_20_training", label="Section 20 - Training", duration_years=2),
        LicenseSection(value="section_20_game", label="Section 20 - Game rancher", duration_years=2),
    ]
}


def compute_expiry(issue_date: date, section: str) -> date:
    """Issue date plus the section's validity period. 29 Feb falls back to 28 Feb."""
    years = SECTION_CATALOG[section].duration_years
    try:
        return issue_date.replace(year=issue_date.year + years)
    except ValueError:
        return issue_date.replace(year=issue_date.year + years, day=28)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


class FirearmForm(BaseModel):
    """Fields the owner fills in when adding or editing a firearm"""
    model_config = ConfigDict(extra="ignore")
    title: str
    issue_date: date
    section: str
    make: Optional[str] = None
    serial_number: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("title")
    @classmethod
    def title_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @field_validator("section")
    @classmethod
    def known_section(cls, v: str) -> str:
        if v not in SECTION_CATALOG:
            raise ValueError(f"Unknown licence section '{v}'")
        return v

    @field_validator("make", "serial_number", "notes")
    @classmethod
    def strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _clean(v)


class FirearmRecord(FirearmForm):
    id: str = Field(default_factory=lambda: f"firearm_{uuid.uuid4().hex[:12]}")
    expiry_date: Optional[date] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def model_post_init(self, __context) -> None:
        # Expiry is always derived, never taken from input
        self.expiry_date = compute_expiry(self.issue_date, self.section)

    @property
    def section_label(self) -> str:
        return SECTION_CATALOG[self.section].label

    def is_duplicate_of(self, other: "FirearmForm") -> bool:
        """Same title and serial, only when both serials are filled in"""
        if not self.serial_number or not other.serial_number:
            return False
        return (
            self.title.strip().lower() == other.title.strip().lower()
            and self.serial_number.strip().lower() == other.serial_number.strip().lower()
        )
