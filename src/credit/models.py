"""Credit check request and result models."""

from dataclasses import dataclass, field
from datetime import date
from typing import Literal

from pydantic import BaseModel, Field


class CreditCheckRequest(BaseModel):
    name: str = Field(min_length=2, max_length=100)
    mobile: str = Field(pattern=r"^[0-9]{10}$")
    email: str | None = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    bureau: Literal["equifax", "experian", "cibil", "crif"] = "cibil"
    person_id: str | None = None
    pan: str | None = None
    aadhaar: str | None = None
    dob: date | None = None
    gender: str | None = None
    occupation: str | None = None
    city: str | None = None
    state: str | None = None
    language: str | None = None

    def bureau_fields(self) -> dict:
        """Fields the bureau payload formatters read."""
        return {
            "name": self.name,
            "mobile": self.mobile,
            "person_id": self.person_id,
            "pan": self.pan,
            "aadhaar": self.aadhaar,
            "dob": self.dob.isoformat() if self.dob else None,
            "gender": self.gender,
        }


@dataclass
class CreditReportResult:
    bureau: str
    score: int | float | None = None
    report_url: str | None = None
    raw: dict = field(default_factory=dict)
