"""
Epic record expansion

The Epic sandbox exposes a single test patient. To fill a triage board the
adapter expands that one patient into ``count`` canonical records using an
ExpansionPolicy. Policies are plain objects so callers and tests can pick
exactly what they get.

CyclicExpansionPolicy, record ``i`` of ``count``:

    lab baseline by i % 3      hemoglobin   potassium
        0                      7.0          6.3        (urgent)
        1                      10.0         5.3        (amber)
        2                      14.0         4.2        (success)

    An observed lab value on the real patient replaces the baseline.

    perturbation               uniform in [-0.75, +0.75] g/dL hemoglobin
                               uniform in [-0.25, +0.25] mmol/L potassium
                               drawn from random.Random(f"{seed}:{i}")

    factor rules (i % modulus == remainder)
        4, 0   frailty
        5, 1   learning-disability
        7, 2   care-home
        8, 3   severe-mental-illness

    age factor from the patient's birth date, as for every other source.
"""

import random
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Protocol, Sequence, Tuple

from labtriage.engines.clinical_engine.triage import derive_factors, format_date_of_birth
from labtriage.models.enums import DataSource, FactorTag
from labtriage.models.patient import CanonicalPatientRecord

from .fhir_models import FHIRObservation, FHIRPatient

DEFAULT_BIRTH_DATE = date(1970, 1, 1)

# (hemoglobin, potassium) per index % len(BASELINES)
BASELINES: Tuple[Tuple[float, float], ...] = (
    (7.0, 6.3),
    (10.0, 5.3),
    (14.0, 4.2),
)

HEMOGLOBIN_JITTER = 0.75
POTASSIUM_JITTER = 0.25


@dataclass(frozen=True)
class FactorRule:
    """Tag every record whose index satisfies ``index % modulus == remainder``"""

    modulus: int
    remainder: int
    tag: FactorTag

    def applies(self, index: int) -> bool:
        return index % self.modulus == self.remainder


FACTOR_RULES: Tuple[FactorRule, ...] = (
    FactorRule(4, 0, FactorTag.FRAILTY),
    FactorRule(5, 1, FactorTag.LEARNING_DISABILITY),
    FactorRule(7, 2, FactorTag.CARE_HOME),
    FactorRule(8, 3, FactorTag.SEVERE_MENTAL_ILLNESS),
)


class ExpansionPolicy(Protocol):
    """Turns one fetched patient into canonical records"""

    def expand(
        self,
        patient: FHIRPatient,
        observations: Sequence[FHIRObservation],
        count: int,
    ) -> List[CanonicalPatientRecord]:
        ...


def find_observation_value(observations: Sequence[FHIRObservation], term: str) -> Optional[float]:
    """Value of the first observation whose code mentions ``term``"""
    for obs in observations:
        if obs.mentions(term) and obs.numeric_value is not None:
            return obs.numeric_value
    return None


def _display_name(patient: FHIRPatient, index: int) -> str:
    if index == 0:
        return f"{patient.first_name} {patient.last_name}"
    return f"{patient.first_name} {patient.last_name}-{index}"


def _build_record(
    patient: FHIRPatient,
    index: int,
    hemoglobin: float,
    potassium: float,
    extra_factors: Sequence[FactorTag],
    today: Optional[date],
    missing_labs: Sequence[str] = (),
) -> CanonicalPatientRecord:
    birth_date = patient.birth_date or DEFAULT_BIRTH_DATE
    return CanonicalPatientRecord.build(
        id=f"epic-{patient.id}-{index}",
        display_name=_display_name(patient, index),
        external_patient_id=f"EPIC-{patient.id[:5]}-{index}",
        date_of_birth=format_date_of_birth(birth_date),
        hemoglobin=hemoglobin,
        potassium=potassium,
        factors=derive_factors(birth_date=patient.birth_date, extra=extra_factors, today=today),
        source=DataSource.FHIR,
        missing_labs=missing_labs,
    )


class CyclicExpansionPolicy:
    """Seeded, reproducible expansion described in the module docstring"""

    def __init__(
        self,
        seed: int = 0,
        hemoglobin_jitter: float = HEMOGLOBIN_JITTER,
        potassium_jitter: float = POTASSIUM_JITTER,
        baselines: Sequence[Tuple[float, float]] = BASELINES,
        factor_rules: Sequence[FactorRule] = FACTOR_RULES,
        today: Optional[date] = None,
    ):
        if not baselines:
            raise ValueError("At least one lab baseline is required")
        self.seed = seed
        self.hemoglobin_jitter = hemoglobin_jitter
        self.potassium_jitter = potassium_jitter
        self.baselines = tuple(baselines)
        self.factor_rules = tuple(factor_rules)
        self.today = today

    def perturbation(self, index: int) -> Tuple[float, float]:
        """(hemoglobin, potassium) offsets for record ``index``"""
        rng = random.Random(f"{self.seed}:{index}")
        return (
            rng.uniform(-self.hemoglobin_jitter, self.hemoglobin_jitter),
            rng.uniform(-self.potassium_jitter, self.potassium_jitter),
        )

    def factors_for(self, index: int) -> List[FactorTag]:
        return [rule.tag for rule in self.factor_rules if rule.applies(index)]

    def expand(
        self,
        patient: FHIRPatient,
        observations: Sequence[FHIRObservation],
        count: int,
    ) -> List[CanonicalPatientRecord]:
        observed_hemoglobin = find_observation_value(observations, "hemoglobin")
        observed_potassium = find_observation_value(observations, "potassium")

        records = []
        for index in range(count):
            base_hemoglobin, base_potassium = self.baselines[index % len(self.baselines)]
            if observed_hemoglobin is not None:
                base_hemoglobin = observed_hemoglobin
            if observed_potassium is not None:
                base_potassium = observed_potassium

            hb_offset, k_offset = self.perturbation(index)
            records.append(
                _build_record(
                    patient,
                    index,
                    hemoglobin=round(base_hemoglobin + hb_offset, 2),
                    potassium=round(base_potassium + k_offset, 2),
                    extra_factors=self.factors_for(index),
                    today=self.today,
                )
            )
        return records


class NoExpansionPolicy:
    """
    One record for the real patient with its real values.

    Labs the patient has no observation for fall back to the normal-range baseline
    and are listed in ``missing_labs``.
    """

    def __init__(self, today: Optional[date] = None):
        self.today = today

    def expand(
        self,
        patient: FHIRPatient,
        observations: Sequence[FHIRObservation],
        count: int,
    ) -> List[CanonicalPatientRecord]:
        if count < 1:
            return []

        missing = []
        hemoglobin = find_observation_value(observations, "hemoglobin")
        if hemoglobin is None:
            hemoglobin = BASELINES[-1][0]
            missing.append("hemoglobin")
        potassium = find_observation_value(observations, "potassium")
        if potassium is None:
            potassium = BASELINES[-1][1]
            missing.append("potassium")

        return [_build_record(patient, 0, hemoglobin, potassium, (), self.today, missing_labs=missing)]


__all__ = [
    "BASELINES",
    "CyclicExpansionPolicy",
    "ExpansionPolicy",
    "FACTOR_RULES",
    "FactorRule",
    "NoExpansionPolicy",
    "find_observation_value",
]
