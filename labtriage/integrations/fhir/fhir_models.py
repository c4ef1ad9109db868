"""
FHIR R4 Resource Models

Internal representations of the FHIR R4 resources the Epic adapter reads.
Maps FHIR JSON to Python dataclasses.

Supported Resources:
- Patient: Demographics
- Observation: Laboratory results
- DiagnosticReport: Report headers (status, code, linked results)
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from labtriage.core.logging import get_logger

logger = get_logger(__name__)


class FHIRResourceType(str, Enum):
    """Resource types read by the adapter"""

    PATIENT = "Patient"
    OBSERVATION = "Observation"
    DIAGNOSTIC_REPORT = "DiagnosticReport"


# ==============================================================================
# Base Classes
# ==============================================================================


@dataclass
class CodeableConcept:
    """FHIR CodeableConcept - coded value with text"""

    code: str
    system: str
    display: str
    text: Optional[str] = None
    # Display strings of every coding, not only the first
    displays: List[str] = field(default_factory=list)

    @classmethod
    def from_fhir(cls, data: Dict[str, Any]) -> Optional["CodeableConcept"]:
        """Parse from FHIR JSON"""
        if not data:
            return None

        codings = data.get("coding", [])
        if codings:
            coding = codings[0]
            return cls(
                code=coding.get("code", ""),
                system=coding.get("system", ""),
                display=coding.get("display", ""),
                text=data.get("text"),
                displays=[c.get("display", "") for c in codings if c.get("display")],
            )

        # Text only
        if data.get("text"):
            return cls(code="", system="", display=data["text"], text=data["text"])

        return None

    def mentions(self, term: str) -> bool:
        """Case-insensitive substring match on any coding display or the text"""
        needle = term.lower()
        candidates = list(self.displays) + [self.display, self.text or ""]
        return any(needle in c.lower() for c in candidates if c)


@dataclass
class Quantity:
    """FHIR Quantity - value with unit"""

    value: float
    unit: str
    code: Optional[str] = None
    system: Optional[str] = None

    @classmethod
    def from_fhir(cls, data: Dict[str, Any]) -> Optional["Quantity"]:
        """Parse from FHIR JSON"""
        if not data or data.get("value") is None:
            return None

        try:
            value = float(data["value"])
        except (TypeError, ValueError):
            value = None
        if value is None or not math.isfinite(value):
            logger.warning("fhir_quantity_not_numeric", value=data["value"])
            return None

        return cls(
            value=value,
            unit=data.get("unit", ""),
            code=data.get("code"),
            system=data.get("system"),
        )


# ==============================================================================
# Resource Models
# ==============================================================================


@dataclass
class FHIRPatient:
    """FHIR Patient resource"""

    id: str
    family_name: Optional[str] = None
    given_names: List[str] = field(default_factory=list)
    birth_date: Optional[date] = None
    gender: Optional[str] = None

    _raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_fhir(cls, data: Dict[str, Any]) -> "FHIRPatient":
        """Parse from FHIR JSON"""
        patient = cls(id=data.get("id", ""), gender=data.get("gender"), _raw=data)

        names = data.get("name", [])
        if names:
            # Use official or first name
            name = next((n for n in names if n.get("use") == "official"), names[0])
            patient.family_name = name.get("family")
            patient.given_names = name.get("given", [])

        if data.get("birthDate"):
            try:
                patient.birth_date = date.fromisoformat(data["birthDate"])
            except ValueError:
                logger.warning("fhir_birth_date_invalid", patient_id=patient.id, value=data["birthDate"])

        return patient

    @property
    def first_name(self) -> str:
        return self.given_names[0] if self.given_names else "Unknown"

    @property
    def last_name(self) -> str:
        return self.family_name or "Patient"


@dataclass
class FHIRObservation:
    """FHIR Observation resource (labs)"""

    id: str
    status: str = "unknown"
    code: Optional[CodeableConcept] = None
    category: List[CodeableConcept] = field(default_factory=list)
    value_quantity: Optional[Quantity] = None
    effective_datetime: Optional[datetime] = None

    _raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_fhir(cls, data: Dict[str, Any]) -> "FHIRObservation":
        """Parse from FHIR JSON"""
        obs = cls(id=data.get("id", ""), status=data.get("status", "unknown"), _raw=data)

        if data.get("code"):
            obs.code = CodeableConcept.from_fhir(data["code"])

        for cat in data.get("category", []):
            cc = CodeableConcept.from_fhir(cat)
            if cc:
                obs.category.append(cc)

        if data.get("valueQuantity"):
            obs.value_quantity = Quantity.from_fhir(data["valueQuantity"])

        if data.get("effectiveDateTime"):
            obs.effective_datetime = _parse_fhir_datetime(data["effectiveDateTime"])

        return obs

    def mentions(self, term: str) -> bool:
        return bool(self.code and self.code.mentions(term))

    @property
    def numeric_value(self) -> Optional[float]:
        return self.value_quantity.value if self.value_quantity else None


@dataclass
class FHIRDiagnosticReport:
    """FHIR DiagnosticReport resource"""

    id: str
    status: str = "unknown"
    code: Optional[CodeableConcept] = None
    result_ids: List[str] = field(default_factory=list)
    issued: Optional[datetime] = None

    _raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_fhir(cls, data: Dict[str, Any]) -> "FHIRDiagnosticReport":
        """Parse from FHIR JSON"""
        report = cls(id=data.get("id", ""), status=data.get("status", "unknown"), _raw=data)

        if data.get("code"):
            report.code = CodeableConcept.from_fhir(data["code"])

        for ref in data.get("result", []):
            reference = ref.get("reference", "")
            if reference:
                report.result_ids.append(reference.split("/")[-1])

        if data.get("issued"):
            report.issued = _parse_fhir_datetime(data["issued"])

        return report


def parse_bundle_entries(bundle: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Resources from a search Bundle; a Bundle without entries is empty"""
    if not bundle:
        return []
    return [entry["resource"] for entry in bundle.get("entry", []) if entry.get("resource")]


def _parse_fhir_datetime(value: str) -> Optional[datetime]:
    """Parse FHIR datetime string"""
    if not value:
        return None

    formats = [
        "%Y-%m-%dT%H:%M:%S.%fZ",
        "%Y-%m-%dT%H:%M:%SZ",
        "%Y-%m-%dT%H:%M:%S.%f%z",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(value.replace("+00:00", "Z"), fmt)
        except ValueError:
            continue

    logger.warning("fhir_datetime_unparsed", value=value)
    return None


__all__ = [
    "CodeableConcept",
    "FHIRDiagnosticReport",
    "FHIRObservation",
    "FHIRPatient",
    "FHIRResourceType",
    "Quantity",
    "parse_bundle_entries",
]
