"""Credit bureau endpoints and request/response shapes.

Each bureau report is fetched from its own upstream endpoint and expects
its own payload layout. Unknown bureau names fall back to CIBIL.
"""

from collections.abc import Callable
from dataclasses import dataclass

DEFAULT_BUREAU = "cibil"

# Response fields that may hold the report PDF link, in lookup order
REPORT_URL_FIELDS = ("report_url", "pdf_url", "credit_report_link", "report_link")


@dataclass(frozen=True)
class BureauConfig:
    name: str
    path: str  # relative to the provider base URL
    format_payload: Callable[[dict], dict]

    def endpoint(self, base_url: str) -> str:
        return f"{base_url.rstrip('/')}{self.path}"


def _format_cibil(data: dict) -> dict:
    gender = data.get("gender")
    return {
        "mobile": data.get("mobile"),
        "pan": data.get("pan"),
        "name": data.get("name"),
        "gender": gender.lower() if gender else "male",
        "consent": "Y",
    }


def _format_crif(data: dict) -> dict:
    # CRIF wants the name split on the first space; last name must not be empty
    parts = (data.get("name") or "").split(" ")
    return {
        "first_name": parts[0],
        "last_name": " ".join(parts[1:]) or " ",
        "mobile": data.get("mobile"),
        "pan": data.get("pan"),
        "consent": "Y",
        "raw": False,
    }


def _format_experian(data: dict) -> dict:
    return {
        "name": data.get("name"),
        "consent": "Y",
        "mobile": data.get("mobile"),
        "pan": data.get("pan"),
    }


def _format_equifax(data: dict) -> dict:
    return {
        "name": data.get("name"),
        "mobile": data.get("mobile"),
        "person_id": data.get("person_id"),
        "pan": data.get("pan"),
        "aadhaar": data.get("aadhaar"),
        "dob": data.get("dob"),
        "gender": data.get("gender"),
    }


BUREAUS: dict[str, BureauConfig] = {
    "cibil": BureauConfig("cibil", "/api/v1/credit-report-cibil/fetch-report-pdf", _format_cibil),
    "crif": BureauConfig("crif", "/api/v1/credit-report-crif/fetch-report-pdf", _format_crif),
    "experian": BureauConfig(
        "experian", "/api/v1/credit-report-experian/fetch-report-pdf", _format_experian
    ),
    "equifax": BureauConfig("equifax", "/api/v1/crs/fetch-pdf-report", _format_equifax),
}


def get_bureau_config(bureau: str | None) -> BureauConfig:
    """Look up a bureau by name, falling back to CIBIL."""
    return BUREAUS.get((bureau or "").lower(), BUREAUS[DEFAULT_BUREAU])


def extract_score(body: dict) -> int | float | None:
    """Pull the credit score out of a bureau response body."""
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        return None
    return data.get("score") or data.get("credit_score") or None


def extract_report_url(body: dict) -> str | None:
    """Pull the report PDF link out of a bureau response body."""
    data = body.get("data") if isinstance(body, dict) else None
    if not isinstance(data, dict):
        return None
    for field in REPORT_URL_FIELDS:
        if data.get(field):
            return data[field]
    return None
