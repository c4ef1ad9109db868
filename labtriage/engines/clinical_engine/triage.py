"""
Lab Triage - Priority Classification and Vulnerability Factors

Maps a patient's latest hemoglobin and potassium values to a triage bucket:
- urgent:  hemoglobin < 8 g/dL or potassium > 6.0 mmol/L
- amber:   hemoglobin < 11 g/dL or potassium > 5.0 or < 3.5 mmol/L
- success: everything else

The display labels shown next to each value reuse the same threshold
constants, so a "Very Low" hemoglobin always lands in the urgent column.

All functions here are pure and deterministic.
"""

import math
import re
from datetime import date
from typing import Iterable, Optional, Tuple

from labtriage.models.enums import FactorTag, PriorityLevel

# Hemoglobin (g/dL)
HEMOGLOBIN_VERY_LOW = 8.0
HEMOGLOBIN_LOW = 11.0

# Potassium (mmol/L)
POTASSIUM_HIGH = 6.0
POTASSIUM_ELEVATED = 5.0
POTASSIUM_LOW = 3.5

# Vulnerability factors
AGE_FACTOR_THRESHOLD_YEARS = 75
BP_SYSTOLIC_FRAILTY = 160
BP_DIASTOLIC_FRAILTY = 100

PRIORITY_LABELS = {
    PriorityLevel.URGENT: "Urgent",
    PriorityLevel.AMBER: "Amber",
    PriorityLevel.SUCCESS: "Green",
}

FACTOR_LABELS = {
    FactorTag.AGE: "Age 75+",
    FactorTag.LEARNING_DISABILITY: "Learning Disability",
    FactorTag.CARE_HOME: "Care Home Resident",
    FactorTag.FRAILTY: "Frailty",
    FactorTag.SEVERE_MENTAL_ILLNESS: "Severe Mental Illness",
}

# Canonical factor order used when de-duplicating
FACTOR_ORDER = list(FactorTag)

_BLOOD_PRESSURE_RE = re.compile(r"^\s*(\d+)\s*/\s*(\d+)")


def _require_number(name: str, value: float) -> float:
    value = float(value)
    if math.isnan(value):
        raise ValueError(f"{name} must be a number, got NaN")
    return value


def classify_priority(hemoglobin: float, potassium: float) -> PriorityLevel:
    """
    Classify a patient into a triage bucket.

    The urgent check runs first: failing either urgent condition makes the
    record urgent whatever the other value is.
    """
    hemoglobin = _require_number("hemoglobin", hemoglobin)
    potassium = _require_number("potassium", potassium)

    if hemoglobin < HEMOGLOBIN_VERY_LOW or potassium > POTASSIUM_HIGH:
        return PriorityLevel.URGENT
    if hemoglobin < HEMOGLOBIN_LOW or potassium > POTASSIUM_ELEVATED or potassium < POTASSIUM_LOW:
        return PriorityLevel.AMBER
    return PriorityLevel.SUCCESS


def label_hemoglobin(value: float) -> str:
    if value < HEMOGLOBIN_VERY_LOW:
        return "Very Low"
    if value < HEMOGLOBIN_LOW:
        return "Low"
    return "Normal"


def label_potassium(value: float) -> str:
    if value > POTASSIUM_HIGH:
        return "High"
    if value > POTASSIUM_ELEVATED:
        return "Elevated"
    return "Normal"


def get_priority_label(level: PriorityLevel) -> str:
    return PRIORITY_LABELS.get(PriorityLevel(level), "Green")


def get_factor_label(tag: FactorTag) -> str:
    """Get the human readable label for a factor tag"""
    return FACTOR_LABELS[FactorTag(tag)]


# ==============================================================================
# Dates and ages
# ==============================================================================


def format_date_of_birth(value: date) -> str:
    return value.strftime("%d/%m/%Y")


def calculate_age(birth_date: date, today: Optional[date] = None) -> int:
    """
    Whole years elapsed since birth.

    A year only counts once the birthday has been reached, so someone born on
    18/10/1950 is 75 on 17/10/2026 and 76 the next day.
    """
    today = today or date.today()
    return today.year - birth_date.year - ((today.month, today.day) < (birth_date.month, birth_date.day))


# ==============================================================================
# Factors
# ==============================================================================


def parse_blood_pressure(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse "systolic/diastolic"; anything else yields None"""
    if not value:
        return None
    match = _BLOOD_PRESSURE_RE.match(value)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def normalize_factors(tags: Iterable[FactorTag]) -> Tuple[FactorTag, ...]:
    """De-duplicate tags and return them in canonical order"""
    present = {FactorTag(t) for t in tags}
    return tuple(tag for tag in FACTOR_ORDER if tag in present)


def derive_factors(
    birth_date: Optional[date] = None,
    blood_pressure: Optional[str] = None,
    extra: Iterable[FactorTag] = (),
    today: Optional[date] = None,
) -> Tuple[FactorTag, ...]:
    """
    Derive vulnerability factors shared by every adapter.

    Args:
        birth_date: Date of birth, if the source has one
        blood_pressure: Raw "systolic/diastolic" reading
        extra: Source-specific tags (care-home, learning disability, ...)
        today: Reference date for the age calculation

    Returns:
        Unique factor tags in canonical order
    """
    factors = list(extra)

    reading = parse_blood_pressure(blood_pressure)
    if reading:
        systolic, diastolic = reading
        if systolic > BP_SYSTOLIC_FRAILTY or diastolic > BP_DIASTOLIC_FRAILTY:
            factors.append(FactorTag.FRAILTY)

    if birth_date and calculate_age(birth_date, today) > AGE_FACTOR_THRESHOLD_YEARS:
        factors.append(FactorTag.AGE)

    return normalize_factors(factors)
