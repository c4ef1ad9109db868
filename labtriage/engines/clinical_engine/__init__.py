"""
Clinical Engine - lab value triage and vulnerability factors

- classify_priority: hemoglobin/potassium -> urgent / amber / success
- label_hemoglobin, label_potassium: display labels sharing the same thresholds
- derive_factors: age and blood-pressure based vulnerability tags
"""

from .triage import (
    AGE_FACTOR_THRESHOLD_YEARS,
    HEMOGLOBIN_LOW,
    HEMOGLOBIN_VERY_LOW,
    POTASSIUM_ELEVATED,
    POTASSIUM_HIGH,
    POTASSIUM_LOW,
    calculate_age,
    classify_priority,
    derive_factors,
    format_date_of_birth,
    get_factor_label,
    get_priority_label,
    label_hemoglobin,
    label_potassium,
    normalize_factors,
    parse_blood_pressure,
)

__all__ = [
    "AGE_FACTOR_THRESHOLD_YEARS",
    "HEMOGLOBIN_LOW",
    "HEMOGLOBIN_VERY_LOW",
    "POTASSIUM_ELEVATED",
    "POTASSIUM_HIGH",
    "POTASSIUM_LOW",
    "calculate_age",
    "classify_priority",
    "derive_factors",
    "format_date_of_birth",
    "get_factor_label",
    "get_priority_label",
    "label_hemoglobin",
    "label_potassium",
    "normalize_factors",
    "parse_blood_pressure",
]
