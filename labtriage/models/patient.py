"""
Canonical patient record

Every adapter (legacy vitals, Epic FHIR, mock) produces this one shape. The
priority is never supplied by upstream data: ``build`` derives it from the
lab values, and the dataclass is frozen so it cannot drift afterwards.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Optional, Tuple

from labtriage.engines.clinical_engine.triage import classify_priority, normalize_factors
from labtriage.models.enums import DataSource, FactorTag, PriorityLevel


@dataclass(frozen=True)
class CanonicalPatientRecord:
    """Normalized patient record consumed by the dashboard"""

    id: str  # Source-qualified, e.g. "vista-1012345678V123456"
    display_name: str
    external_patient_id: str
    date_of_birth: Optional[str]  # DD/MM/YYYY
    hemoglobin: float  # g/dL
    potassium: float  # mmol/L
    priority: PriorityLevel
    factors: Tuple[FactorTag, ...] = ()
    snomed_codes: Dict[str, str] = field(default_factory=dict, hash=False)
    source: DataSource = DataSource.MOCK
    # Labs that were absent upstream and filled from a configured fallback
    missing_labs: Tuple[str, ...] = ()

    @classmethod
    def build(
        cls,
        *,
        id: str,
        display_name: str,
        external_patient_id: str,
        date_of_birth: Optional[str],
        hemoglobin: float,
        potassium: float,
        factors: Iterable[FactorTag] = (),
        snomed_codes: Optional[Dict[str, str]] = None,
        source: DataSource = DataSource.MOCK,
        missing_labs: Iterable[str] = (),
    ) -> "CanonicalPatientRecord":
        """Construct a record, deriving priority and de-duplicating factors"""
        return cls(
            id=id,
            display_name=display_name,
            external_patient_id=external_patient_id,
            date_of_birth=date_of_birth,
            hemoglobin=float(hemoglobin),
            potassium=float(potassium),
            priority=classify_priority(hemoglobin, potassium),
            factors=normalize_factors(factors),
            snomed_codes=dict(snomed_codes or {}),
            source=DataSource(source),
            missing_labs=tuple(missing_labs),
        )

    def with_source(self, source: DataSource) -> "CanonicalPatientRecord":
        """Copy of this record with its provenance set"""
        return replace(self, source=DataSource(source))

    @property
    def has_missing_labs(self) -> bool:
        return bool(self.missing_labs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "external_patient_id": self.external_patient_id,
            "date_of_birth": self.date_of_birth,
            "hemoglobin": self.hemoglobin,
            "potassium": self.potassium,
            "priority": self.priority.value,
            "factors": [f.value for f in self.factors],
            "snomed_codes": dict(self.snomed_codes),
            "source": self.source.value,
            "missing_labs": list(self.missing_labs),
        }
