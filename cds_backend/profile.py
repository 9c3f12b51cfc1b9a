"""
Logged-in provider profile, resolved from the id_token's fhirUser claim
"""
import logging

from fastapi import APIRouter, Depends

from .errors import DashboardError, FHIRRequestError
from .fhir import fhir_get
from .formatting import format_name
from .oauth import decode_jwt_payload
from .sessions import require_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/user", tags=["User"])


def fhir_user_url(fhir_user, fhir_base):
    """fhirUser is either an absolute URL or a reference like Practitioner/123"""
    if fhir_user.startswith("http"):
        return fhir_user
    return f"{fhir_base}/{fhir_user.lstrip('/')}"


async def get_current_fhir_user(session):
    """
    Load the FHIR resource (Practitioner, Person, ...) the id_token points at
    Returns None when there is no id_token, no fhirUser claim or the read fails.
    """
    id_token = session.get("id_token")
    if not id_token:
        return None

    claims = decode_jwt_payload(id_token)
    if not claims:
        return None

    fhir_user = claims.get("fhirUser") or claims.get("extension_fhirUser")
    if not fhir_user:
        logger.info("id_token has no fhirUser claim")
        return None

    try:
        return await fhir_get(session, fhir_user_url(fhir_user, session["fhir_base"]))
    except FHIRRequestError as e:
        logger.error(f"Error loading fhirUser resource: {e.details}")
        return None


def display_name(resource):
    if resource.get("name"):
        return format_name(resource)
    roles = resource.get("practitionerRole") or []
    if roles and (roles[0].get("practitioner") or {}).get("display"):
        return roles[0]["practitioner"]["display"]
    return "Unknown"


@router.get("/me")
async def current_user(session: dict = Depends(require_session)):
    try:
        user_resource = await get_current_fhir_user(session)
    except Exception as e:
        logger.error(f"Error in /api/user/me: {e}")
        raise DashboardError(500, "Failed to load user profile")

    if not user_resource:
        return {"authenticated": True, "user": None}

    return {
        "authenticated": True,
        "user": {
            "id": user_resource.get("id"),
            "resourceType": user_resource.get("resourceType"),
            "name": display_name(user_resource),
        },
    }
