"""
Static mock dataset

Fifteen fixed patients, five per triage column. Served when the mock source
is selected and whenever another source fails or returns nothing. Priorities
are derived from the lab values like every other record.
"""

from typing import List, Tuple

from labtriage.models.enums import DataSource, FactorTag
from labtriage.models.patient import CanonicalPatientRecord

AGE = FactorTag.AGE
LD = FactorTag.LEARNING_DISABILITY
CARE_HOME = FactorTag.CARE_HOME
FRAILTY = FactorTag.FRAILTY
SMI = FactorTag.SEVERE_MENTAL_ILLNESS

SCHIZOPHRENIA_SNOMED = "58214004"
LEARNING_DISABILITY_SNOMED = "110359009"

# (name, patient id, date of birth, hemoglobin, potassium, factors)
_MOCK_ROWS: Tuple[Tuple[str, str, str, float, float, Tuple[FactorTag, ...]], ...] = (
    # Urgent
    ("Sarah Johnson", "PTN-73621", "12/05/1948", 5.9, 6.2, (AGE, FRAILTY)),
    ("Michael Chen", "PTN-48213", "03/11/1962", 7.1, 6.0, (LD,)),
    ("Margaret Wilson", "PTN-91547", "27/02/1941", 6.8, 6.3, (AGE, CARE_HOME)),
    ("David Okafor", "PTN-20488", "14/08/1979", 5.5, 6.1, (SMI,)),
    ("Eileen Murphy", "PTN-66302", "09/01/1944", 4.9, 6.5, (AGE, FRAILTY, CARE_HOME)),
    # Amber
    ("James Patel", "PTN-31975", "21/06/1958", 9.5, 5.4, ()),
    ("Linda Thompson", "PTN-58820", "30/09/1946", 10.2, 5.1, (AGE,)),
    ("Robert Evans", "PTN-77143", "05/04/1985", 8.9, 5.5, (LD, CARE_HOME)),
    ("Aisha Rahman", "PTN-12094", "17/12/1970", 10.6, 5.3, ()),
    ("Thomas Hughes", "PTN-83561", "02/03/1966", 9.9, 5.6, (SMI,)),
    # Green
    ("Emily Carter", "PTN-45019", "11/07/1990", 13.5, 4.2, ()),
    ("George Kowalski", "PTN-69732", "23/10/1939", 14.1, 4.0, (AGE,)),
    ("Priya Nair", "PTN-25876", "08/05/1982", 12.6, 3.9, ()),
    ("William Brown", "PTN-50643", "19/01/1955", 13.2, 4.4, (FRAILTY,)),
    ("Grace Adeyemi", "PTN-38210", "26/11/1974", 15.0, 4.1, ()),
)

_SNOMED_BY_FACTOR = {
    SMI: {"schizophrenia": SCHIZOPHRENIA_SNOMED},
    LD: {"learning-disability": LEARNING_DISABILITY_SNOMED},
}


def _snomed_codes(factors: Tuple[FactorTag, ...]):
    codes = {}
    for factor in factors:
        codes.update(_SNOMED_BY_FACTOR.get(factor, {}))
    return codes


def get_mock_patients() -> List[CanonicalPatientRecord]:
    """A fresh list of the fixed mock records"""
    return [
        CanonicalPatientRecord.build(
            id=f"mock-{index}",
            display_name=name,
            external_patient_id=patient_id,
            date_of_birth=dob,
            hemoglobin=hemoglobin,
            potassium=potassium,
            factors=factors,
            snomed_codes=_snomed_codes(factors),
            source=DataSource.MOCK,
        )
        for index, (name, patient_id, dob, hemoglobin, potassium, factors) in enumerate(_MOCK_ROWS, start=1)
    ]


__all__ = ["get_mock_patients"]
