"""
FHIR proxy endpoints

Each endpoint forwards a search to the FHIR server with the session's access
token and returns the Bundle unchanged. The dashboard endpoint fetches every
section at once and returns display rows.
"""
import asyncio
import logging

import httpx
from fastapi import APIRouter, Depends
from starlette.concurrency import run_in_threadpool

from . import config
from .errors import FHIRRequestError, ReauthRequired
from .formatting import (
    condition_rows,
    diagnostic_report_rows,
    lab_rows,
    medication_rows,
    patient_row,
    vital_rows,
)
from .oauth import refresh_access_token, token_expiring
from .sessions import require_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["FHIR"])


def fhir_headers(access_token):
    return {
        "Authorization": f"Bearer {access_token}",
        "Accept": "application/fhir+json",
    }


def _upstream_body(response):
    try:
        return response.json()
    except ValueError:
        return response.text


async def _refresh(session):
    try:
        await run_in_threadpool(refresh_access_token, session)
    except ReauthRequired as e:
        raise FHIRRequestError(401, "Re-authentication required", str(e))


async def _refresh_once(session, used_token):
    """Refresh unless another request already replaced used_token"""
    async with session.setdefault("refresh_lock", asyncio.Lock()):
        # refresh tokens may be single use; only the first waiter spends it
        if session["access_token"] == used_token:
            await _refresh(session)


async def fhir_get(session, url, params=None):
    """
    GET a FHIR URL with the session's bearer token
    On a 401 the token is refreshed once (when a refresh token exists) and the request retried.
    """
    if token_expiring(session) and session.get("refresh_token"):
        await _refresh_once(session, session["access_token"])

    try:
        async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT) as client:
            used_token = session["access_token"]
            response = await client.get(url, headers=fhir_headers(used_token), params=params)

            if response.status_code == 401 and session.get("refresh_token"):
                logger.warning(f"Received 401 for {url}, attempting token refresh")
                await _refresh_once(session, used_token)
                response = await client.get(
                    url, headers=fhir_headers(session["access_token"]), params=params
                )
    except httpx.TimeoutException as e:
        logger.error(f"FHIR request timed out: {url}")
        raise FHIRRequestError(504, "FHIR request timed out", str(e))
    except httpx.HTTPError as e:
        logger.error(f"FHIR request failed: {url}: {e}")
        raise FHIRRequestError(502, "FHIR server unreachable", str(e))

    if response.status_code >= 400:
        details = _upstream_body(response)
        logger.error(f"FHIR {url} error: HTTP {response.status_code}: {details}")
        raise FHIRRequestError(response.status_code, f"HTTP {response.status_code}", details)

    return response.json()


async def fhir_search(session, resource, params=None):
    return await fhir_get(session, f"{session['fhir_base']}/{resource}", params)


def patient_query(patient_id, section):
    """(resource type, search params) for a patient's dashboard section"""
    resource, extra = config.FHIR_QUERIES[section]
    params = {"patient": patient_id, "_count": config.RESOURCE_COUNT}
    params.update(extra)
    return resource, params


async def _search_or_fail(session, resource, params, what):
    try:
        return await fhir_search(session, resource, params)
    except FHIRRequestError as e:
        status = e.status_code if e.status_code >= 400 else 500
        raise FHIRRequestError(status, f"Failed to fetch {what}", e.details)


@router.get("/patients")
async def get_patients(session: dict = Depends(require_session)):
    return await _search_or_fail(
        session, "Patient", {"_count": config.PATIENT_LIST_COUNT}, "patients"
    )


@router.get("/patients/list")
async def list_patients(session: dict = Depends(require_session)):
    """Patient picker rows: id, display name, gender and birth date"""
    data = await get_patients(session)
    return [patient_row(entry.get("resource") or {}) for entry in data.get("entry") or []]


async def _patient_section(session, patient_id, section, what):
    resource, params = patient_query(patient_id, section)
    return await _search_or_fail(session, resource, params, what)


@router.get("/patient/{patient_id}/vitals")
async def get_vitals(patient_id: str, session: dict = Depends(require_session)):
    return await _patient_section(session, patient_id, "vitals", "vitals")


@router.get("/patient/{patient_id}/labs")
async def get_labs(patient_id: str, session: dict = Depends(require_session)):
    return await _patient_section(session, patient_id, "labs", "labs")


@router.get("/patient/{patient_id}/conditions")
async def get_conditions(patient_id: str, session: dict = Depends(require_session)):
    return await _patient_section(session, patient_id, "conditions", "conditions")


@router.get("/patient/{patient_id}/medications")
async def get_medications(patient_id: str, session: dict = Depends(require_session)):
    return await _patient_section(session, patient_id, "medications", "medications")


@router.get("/patient/{patient_id}/diagnostic-reports")
async def get_diagnostic_reports(patient_id: str, session: dict = Depends(require_session)):
    return await _patient_section(
        session, patient_id, "diagnostic-reports", "diagnostic reports"
    )


@router.get("/patient/{patient_id}/dashboard")
async def get_dashboard(patient_id: str, session: dict = Depends(require_session)):
    """
    All clinical sections for one patient, formatted for display
    patientData carries the raw entries in the shape /api/ai/recommendations accepts.
    """
    sections = ["vitals", "labs", "conditions", "medications", "diagnostic-reports"]
    bundles = await asyncio.gather(*[
        _patient_section(session, patient_id, section, section.replace("-", " "))
        for section in sections
    ])
    entries = {section: bundle.get("entry") or [] for section, bundle in zip(sections, bundles)}

    counts = ", ".join(f"{section}={len(rows)}" for section, rows in entries.items())
    logger.info(f"Dashboard for patient {patient_id}: {counts}")

    return {
        "patientId": patient_id,
        "vitals": vital_rows(entries["vitals"]),
        "labs": lab_rows(entries["labs"]),
        "conditions": condition_rows(entries["conditions"]),
        "medications": medication_rows(entries["medications"]),
        "diagnosticReports": diagnostic_report_rows(entries["diagnostic-reports"]),
        "patientData": {
            "vitals": entries["vitals"],
            "labs": entries["labs"],
            "conditions": entries["conditions"],
            "medications": entries["medications"],
            "diagnosticReports": entries["diagnostic-reports"],
        },
    }
