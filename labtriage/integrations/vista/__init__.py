"""
VistA Integration Package

Client for the legacy VistA vitals interface (pipe/caret delimited text).
"""

from .vitals_client import (
    LabFallback,
    VistaConnectionError,
    VistaError,
    VistaPatient,
    VistaResponseError,
    VistaTimeoutError,
    VistaVital,
    VistaVitalsClient,
    create_vista_client,
    map_vista_to_record,
    parse_patient_list,
    parse_vitals_record,
)

__all__ = [
    "LabFallback",
    "VistaConnectionError",
    "VistaError",
    "VistaPatient",
    "VistaResponseError",
    "VistaTimeoutError",
    "VistaVital",
    "VistaVitalsClient",
    "create_vista_client",
    "map_vista_to_record",
    "parse_patient_list",
    "parse_vitals_record",
]
