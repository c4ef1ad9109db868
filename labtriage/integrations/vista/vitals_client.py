"""
VistA Vitals Client

Client for the legacy VistA-style vitals interface. Two plain-text endpoints:

- ``GET {base}/LIST?CNT=<n>`` returns ``icn1;icn2;...``
- ``GET {base}/VITALS?ICN=<icn>`` returns
  ``icn^code|name|value|date|location^code|name|value|date|location...``

Records are fetched concurrently (one list request, then one vitals request
per patient) and mapped onto CanonicalPatientRecord. A failure on any single
request fails the whole batch; the aggregator decides what to show instead.
"""

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import aiohttp
from labtriage.core.config import settings
from labtriage.core.logging import get_logger
from labtriage.engines.clinical_engine.triage import derive_factors
from labtriage.models.enums import DataSource
from labtriage.models.patient import CanonicalPatientRecord

logger = get_logger(__name__)

RECORD_SEPARATOR = "^"
FIELD_SEPARATOR = "|"
LIST_SEPARATOR = ";"
VITAL_FIELD_COUNT = 5

BLOOD_PRESSURE_VITAL = "blood pressure"


# ==============================================================================
# Exceptions
# ==============================================================================


class VistaError(Exception):
    """Base VistA error"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class VistaConnectionError(VistaError):
    """Network unreachable or connection dropped"""


class VistaTimeoutError(VistaError):
    """Request timeout"""


class VistaResponseError(VistaError):
    """Non-2xx response"""


# ==============================================================================
# Data Classes
# ==============================================================================


@dataclass
class VistaVital:
    """One ``code|name|value|date|location`` tuple"""

    snomed_code: str
    name: str
    value: str
    date: str
    location: str

    @property
    def recorded_at(self) -> Optional[datetime]:
        return _parse_vital_date(self.date)


@dataclass
class VistaPatient:
    """Parsed vitals response for one patient"""

    icn: str
    vitals: List[VistaVital] = field(default_factory=list)


@dataclass(frozen=True)
class LabFallback:
    """
    Values used when a patient has no usable hemoglobin/potassium vital.

    Substituted values are always reported in ``missing_labs`` on the record.
    """

    hemoglobin: float
    potassium: float


# ==============================================================================
# Parsing
# ==============================================================================


def parse_patient_list(text: str) -> List[str]:
    """Split the list response into ICNs, ignoring empty segments"""
    return [segment.strip() for segment in (text or "").strip().split(LIST_SEPARATOR) if segment.strip()]


def parse_vitals_record(icn: str, text: str) -> VistaPatient:
    """
    Parse a vitals response.

    Tuples with fewer than five ``|`` fields are dropped; they never fail the
    record.
    """
    parts = (text or "").strip().split(RECORD_SEPARATOR)
    patient = VistaPatient(icn=parts[0].strip() or icn)

    for raw in parts[1:]:
        fields = raw.split(FIELD_SEPARATOR)
        if len(fields) < VITAL_FIELD_COUNT:
            logger.debug("vista_vital_dropped", icn=patient.icn, field_count=len(fields))
            continue
        patient.vitals.append(
            VistaVital(
                snomed_code=fields[0].strip(),
                name=fields[1].strip(),
                value=fields[2].strip(),
                date=fields[3].strip(),
                location=fields[4].strip(),
            )
        )

    return patient


def _parse_vital_date(value: str) -> Optional[datetime]:
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%m/%d/%Y", "%Y%m%d"):
        try:
            return datetime.strptime(value, fmt)
        except (TypeError, ValueError):
            continue
    return None


def _is_newer(candidate: VistaVital, current: VistaVital) -> bool:
    candidate_at = candidate.recorded_at
    current_at = current.recorded_at
    if candidate_at is None:
        return False
    return current_at is None or candidate_at > current_at


def _latest_matching(vitals: Iterable[VistaVital], predicate) -> Optional[VistaVital]:
    found: Optional[VistaVital] = None
    for vital in vitals:
        if predicate(vital.name) and (found is None or _is_newer(vital, found)):
            found = vital
    return found


def find_lab_value(vitals: Iterable[VistaVital], lab_name: str) -> Optional[float]:
    """Numeric value of the latest vital whose name contains ``lab_name``"""
    needle = lab_name.lower()
    vital = _latest_matching(vitals, lambda name: needle in name.lower())
    if vital is None:
        return None
    try:
        value = float(vital.value)
    except ValueError:
        value = None
    if value is None or not math.isfinite(value):
        logger.warning("vista_lab_value_not_numeric", lab=lab_name, value=vital.value)
        return None
    return value


def extract_snomed_codes(vitals: Iterable[VistaVital]) -> Dict[str, str]:
    """Map normalized vital name (``blood-pressure``) to its SNOMED code"""
    return {"-".join(vital.name.lower().split()): vital.snomed_code for vital in vitals}


def map_vista_to_record(patient: VistaPatient, lab_fallback: LabFallback) -> CanonicalPatientRecord:
    """Map a parsed VistA patient onto the canonical record"""
    missing: List[str] = []

    hemoglobin = find_lab_value(patient.vitals, "hemoglobin")
    if hemoglobin is None:
        hemoglobin = lab_fallback.hemoglobin
        missing.append("hemoglobin")

    potassium = find_lab_value(patient.vitals, "potassium")
    if potassium is None:
        potassium = lab_fallback.potassium
        missing.append("potassium")

    if missing:
        logger.warning("vista_labs_missing", icn=patient.icn, missing=missing)

    blood_pressure = _latest_matching(patient.vitals, lambda name: name.lower() == BLOOD_PRESSURE_VITAL)

    # The vitals interface carries no demographics, so no age factor here
    factors = derive_factors(blood_pressure=blood_pressure.value if blood_pressure else None)

    return CanonicalPatientRecord.build(
        id=f"vista-{patient.icn}",
        display_name=f"Patient {patient.icn[:8]}",
        external_patient_id=patient.icn,
        date_of_birth=None,
        hemoglobin=hemoglobin,
        potassium=potassium,
        factors=factors,
        snomed_codes=extract_snomed_codes(patient.vitals),
        source=DataSource.LEGACY_VITALS,
        missing_labs=missing,
    )


# ==============================================================================
# Client
# ==============================================================================


class VistaVitalsClient:
    """
    Async client for the VistA vitals interface.

    Usage:
        async with VistaVitalsClient("http://localhost:8001") as client:
            records = await client.fetch_all_patient_records(count=10)
    """

    def __init__(
        self,
        base_url: str,
        list_path: str = "LIST",
        vitals_path: str = "VITALS",
        timeout_seconds: float = 15,
        lab_fallback: Optional[LabFallback] = None,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.list_path = list_path.strip("/")
        self.vitals_path = vitals_path.strip("/")
        self.lab_fallback = lab_fallback or LabFallback(
            hemoglobin=settings.VISTA_FALLBACK_HEMOGLOBIN,
            potassium=settings.VISTA_FALLBACK_POTASSIUM,
        )
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session"""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close HTTP session if this client created it"""
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    async def __aenter__(self):
        await self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _get_text(self, path: str, params: Dict[str, str]) -> str:
        session = await self._get_session()
        url = f"{self.base_url}/{path}"

        try:
            async with session.get(url, params=params, timeout=self._timeout) as response:
                if not 200 <= response.status < 300:
                    raise VistaResponseError(f"{path} failed with status {response.status}", response.status)
                return await response.text()
        except asyncio.TimeoutError:
            raise VistaTimeoutError(f"{path} timed out")
        except aiohttp.ClientError as e:
            raise VistaConnectionError(f"Network error calling {path}: {e}")

    async def fetch_patient_ids(self, count: int = 10) -> List[str]:
        """Fetch up to ``count`` patient ICNs"""
        text = await self._get_text(self.list_path, {"CNT": str(count)})
        icns = parse_patient_list(text)
        logger.info("vista_patient_list_fetched", requested=count, received=len(icns))
        return icns

    async def fetch_patient_vitals(self, icn: str) -> VistaPatient:
        """Fetch and parse one patient's vitals"""
        text = await self._get_text(self.vitals_path, {"ICN": icn})
        return parse_vitals_record(icn, text)

    async def fetch_patient_record(self, icn: str) -> CanonicalPatientRecord:
        patient = await self.fetch_patient_vitals(icn)
        return map_vista_to_record(patient, self.lab_fallback)

    async def fetch_all_patient_records(self, count: int = 10) -> List[CanonicalPatientRecord]:
        """
        Fetch the patient list, then every patient's vitals concurrently.

        Raises:
            VistaError: If the list request or any vitals request fails
        """
        icns = await self.fetch_patient_ids(count)
        if not icns:
            return []

        tasks = [asyncio.ensure_future(self.fetch_patient_record(icn)) for icn in icns]
        try:
            records = await asyncio.gather(*tasks)
        except Exception:
            # First failure wins; stop the remaining vitals requests
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        logger.info("vista_batch_fetched", count=len(records))
        return list(records)


def create_vista_client(session: Optional[aiohttp.ClientSession] = None) -> VistaVitalsClient:
    """Create a client from application settings"""
    return VistaVitalsClient(
        base_url=settings.VISTA_API_BASE_URL,
        list_path=settings.VISTA_LIST_PATH,
        vitals_path=settings.VISTA_VITALS_PATH,
        timeout_seconds=settings.VISTA_TIMEOUT_SEC,
        session=session,
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
    "extract_snomed_codes",
    "find_lab_value",
    "map_vista_to_record",
    "parse_patient_list",
    "parse_vitals_record",
]
