"""
SMART on FHIR authorization: PKCE, authorize URL, code exchange and token refresh

The provider logs in with the authorization code flow against the FHIR
server's OAuth2 endpoints. The code verifier and state live in the
server-side session created by /launch; the callback on /redirect checks the
state, exchanges the code and keeps the tokens in that session.
"""
import base64
import hashlib
import json
import logging
import secrets
import time
import urllib.parse
from typing import Optional

import requests
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse

from . import config
from .errors import DashboardError, ReauthRequired
from .sessions import (
    clear_session_cookie,
    create_session,
    current_session,
    destroy_session,
    is_authenticated,
    session_id_from,
    set_session_cookie,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_pkce():
    """
    Create a PKCE pair (RFC 7636, S256)
    Returns (code_verifier, code_challenge)
    """
    code_verifier = _b64url(secrets.token_bytes(32))
    code_challenge = _b64url(hashlib.sha256(code_verifier.encode("ascii")).digest())
    return code_verifier, code_challenge


def generate_state() -> str:
    return secrets.token_hex(16)


def decode_jwt_payload(jwt_token):
    """
    Decode JWT payload without verification
    The id_token only feeds the fhirUser lookup, which is re-authorized by the FHIR server
    """
    try:
        jwt_parts = jwt_token.split(".")
        if len(jwt_parts) < 2:
            raise ValueError("Invalid JWT format")

        payload_encoded = jwt_parts[1]
        payload_encoded += "=" * (-len(payload_encoded) % 4)
        payload = json.loads(base64.urlsafe_b64decode(payload_encoded))
        if not isinstance(payload, dict):
            raise ValueError("JWT payload is not an object")
        return payload

    except (AttributeError, ValueError, TypeError) as e:
        logger.warning(f"Failed to decode JWT: {e}")
        return None


def discover_smart_configuration(iss: str) -> dict:
    """
    Read authorization and token endpoints from {iss}/.well-known/smart-configuration
    """
    smart_config_url = f"{iss.rstrip('/')}/.well-known/smart-configuration"
    logger.info(f"Discovering SMART configuration from {smart_config_url}")

    response = requests.get(smart_config_url, timeout=config.HTTP_TIMEOUT)
    response.raise_for_status()
    smart_config = response.json()

    return {
        "authorization_endpoint": smart_config["authorization_endpoint"],
        "token_endpoint": smart_config["token_endpoint"],
    }


def build_authorization_url(authorization_endpoint, state, code_challenge, aud, launch=None):
    params = {
        "response_type": "code",
        "client_id": config.CLIENT_ID,
        "redirect_uri": config.REDIRECT_URI,
        "scope": config.SCOPE,
        "state": state,
        "aud": aud,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
    }
    if launch:
        params["launch"] = launch
    separator = "&" if "?" in authorization_endpoint else "?"
    return authorization_endpoint + separator + urllib.parse.urlencode(params)


def _store_tokens(session: dict, token_response: dict) -> None:
    session["access_token"] = token_response["access_token"]
    session["refresh_token"] = token_response.get("refresh_token", session.get("refresh_token"))
    session["granted_scope"] = token_response.get("scope", session.get("granted_scope"))
    session["id_token"] = token_response.get("id_token", session.get("id_token"))
    expires_in = token_response.get("expires_in", 3600)
    session["expires_at"] = time.time() + int(expires_in)


def exchange_code(session: dict, code: str) -> None:
    """
    POST the authorization code and PKCE verifier to the token endpoint
    Raises requests.RequestException or ValueError on failure
    """
    token_data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": config.REDIRECT_URI,
        "client_id": config.CLIENT_ID,
        "client_secret": config.CLIENT_SECRET,
        "code_verifier": session["code_verifier"],
    }

    logger.info(f"Exchanging authorization code at {session['token_endpoint']}")
    token_resp = requests.post(
        session["token_endpoint"],
        data=token_data,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
        timeout=config.HTTP_TIMEOUT,
    )
    token_resp.raise_for_status()
    token_response = token_resp.json()

    if "access_token" not in token_response:
        raise ValueError("Token response has no access_token")

    _store_tokens(session, token_response)
    session["state"] = None
    session["code_verifier"] = None
    logger.info(f"Access token obtained, granted scope: {session['granted_scope']}")


def refresh_access_token(session: dict) -> None:
    """
    Use the refresh token (offline_access) to get a new access token
    Raises ReauthRequired when there is nothing to refresh with or the server refuses
    """
    if not session.get("refresh_token"):
        raise ReauthRequired("No refresh token available")

    logger.info("Access token expired or expiring soon, attempting refresh")
    try:
        resp = requests.post(
            session["token_endpoint"],
            data={
                "grant_type": "refresh_token",
                "refresh_token": session["refresh_token"],
                "client_id": config.CLIENT_ID,
                "client_secret": config.CLIENT_SECRET,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            timeout=config.HTTP_TIMEOUT,
        )
        resp.raise_for_status()
        token_response = resp.json()
    except (requests.RequestException, ValueError) as e:
        logger.error(f"Token refresh failed: {e}")
        raise ReauthRequired("Token refresh failed") from e

    if "access_token" not in token_response:
        logger.error("Token refresh response has no access_token")
        raise ReauthRequired("Token refresh failed")

    _store_tokens(session, token_response)
    logger.info("Token refresh successful")


def token_expiring(session: dict, leeway: int = 30) -> bool:
    expires_at = session.get("expires_at")
    return expires_at is not None and expires_at <= time.time() + leeway


@router.get("/launch")
def launch_app(request: Request, iss: Optional[str] = None, launch: Optional[str] = None):
    """
    Start the SMART authorization flow
    Standalone launch uses the configured endpoints; an EHR launch passes iss
    (and usually launch) and the endpoints are discovered from that server.
    """
    destroy_session(session_id_from(request))
    session_id, session = create_session()

    if iss:
        try:
            endpoints = discover_smart_configuration(iss)
        except (requests.RequestException, KeyError, ValueError) as e:
            logger.error(f"Error discovering SMART configuration: {e}")
            destroy_session(session_id)
            raise DashboardError(502, "Failed to discover SMART configuration", str(e))
        session["authorization_endpoint"] = endpoints["authorization_endpoint"]
        session["token_endpoint"] = endpoints["token_endpoint"]
        session["fhir_base"] = iss.rstrip("/")
        session["launch"] = launch

    code_verifier, code_challenge = generate_pkce()
    state = generate_state()
    session["state"] = state
    session["code_verifier"] = code_verifier

    auth_url = build_authorization_url(
        session["authorization_endpoint"],
        state=state,
        code_challenge=code_challenge,
        aud=session["fhir_base"],
        launch=session["launch"],
    )
    logger.info(f"Authorization URL built for {session['authorization_endpoint']}")

    response = JSONResponse({"authUrl": auth_url})
    set_session_cookie(response, session_id)
    return response


@router.get("/redirect")
def oauth_redirect(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
):
    """
    OAuth2 redirect endpoint
    Always answers with a redirect back to the frontend carrying the outcome
    """
    session = current_session(request)

    if not state or not session or not session.get("state") or state != session["state"]:
        logger.warning("OAuth redirect with missing or mismatched state")
        return RedirectResponse(f"{config.FRONTEND_URL}?error=invalid_state")

    if error:
        logger.warning(f"Authorization server returned error: {error}")
        return RedirectResponse(
            f"{config.FRONTEND_URL}?" + urllib.parse.urlencode({"error": error})
        )

    if not code:
        return RedirectResponse(f"{config.FRONTEND_URL}?error=token_exchange_failed")

    try:
        exchange_code(session, code)
    except (requests.RequestException, ValueError) as e:
        details = e.response.text if getattr(e, "response", None) is not None else str(e)
        logger.error(f"Token exchange error: {details}")
        return RedirectResponse(f"{config.FRONTEND_URL}?error=token_exchange_failed")

    return RedirectResponse(f"{config.FRONTEND_URL}?auth=success")


@router.get("/api/auth/status")
def auth_status(request: Request):
    session = current_session(request)
    return {
        "authenticated": is_authenticated(session),
        "scope": session.get("granted_scope") if session else None,
        "hasIdToken": bool(session and session.get("id_token")),
    }


@router.post("/api/logout")
def logout(request: Request):
    destroy_session(session_id_from(request))
    response = JSONResponse({"success": True})
    clear_session_cookie(response)
    return response
