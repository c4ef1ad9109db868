"""
Enumerations shared by the classifier, the adapters and the aggregator.
"""

from enum import Enum


class PriorityLevel(str, Enum):
    """Triage bucket derived from lab values"""

    URGENT = "urgent"
    AMBER = "amber"
    SUCCESS = "success"


class FactorTag(str, Enum):
    """Vulnerability marker influencing how a patient is contacted"""

    AGE = "age"
    LEARNING_DISABILITY = "learning-disability"
    CARE_HOME = "care-home"
    FRAILTY = "frailty"
    SEVERE_MENTAL_ILLNESS = "severe-mental-illness"


class DataSource(str, Enum):
    """Where a record's values originated"""

    LEGACY_VITALS = "legacy-vitals"
    FHIR = "fhir"
    MOCK = "mock"


DATA_SOURCE_DISPLAY_NAMES = {
    DataSource.LEGACY_VITALS: "VistA EHR",
    DataSource.FHIR: "Epic EHR",
    DataSource.MOCK: "Mock Data",
}


def get_data_source_display_name(source: DataSource) -> str:
    """Get the display name for a data source"""
    try:
        return DATA_SOURCE_DISPLAY_NAMES[DataSource(source)]
    except ValueError:
        return "Unknown Source"
