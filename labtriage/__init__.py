"""
LabTriage Gateway

Aggregates hemoglobin and potassium results from the legacy VistA vitals
interface, Epic FHIR and a static fallback dataset into one canonical
patient record with a derived triage priority and vulnerability factors.
"""

__version__ = "0.1.0"
