# Configuration for the SMART on FHIR clinical dashboard backend
import os

from dotenv import load_dotenv

load_dotenv()

# Client configuration
CLIENT_ID = os.getenv("SMART_CLIENT_ID", "")
CLIENT_SECRET = os.getenv("SMART_CLIENT_SECRET", "")

# Server configuration
BACKEND_PORT = int(os.getenv("BACKEND_PORT", "5000"))
BACKEND_URL = os.getenv("BACKEND_URL", f"http://localhost:{BACKEND_PORT}")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", FRONTEND_URL).split(",")
    if origin.strip()
]
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# OAuth2 configuration (OpenEMR defaults)
FHIR_SERVER_URL = os.getenv("FHIR_SERVER_URL", "http://localhost:8080")
REDIRECT_URI = os.getenv("SMART_REDIRECT_URI", f"{BACKEND_URL}/redirect")
AUTHORIZATION_ENDPOINT = os.getenv(
    "SMART_AUTHORIZATION_ENDPOINT", f"{FHIR_SERVER_URL}/oauth2/default/authorize"
)
TOKEN_ENDPOINT = os.getenv("SMART_TOKEN_ENDPOINT", f"{FHIR_SERVER_URL}/oauth2/default/token")
FHIR_BASE_URL = os.getenv("FHIR_BASE_URL", f"{FHIR_SERVER_URL}/apis/default/fhir")
SCOPE = os.getenv(
    "SMART_SCOPE",
    "openid launch fhirUser user/Patient.read user/Observation.read user/Condition.read "
    "user/MedicationRequest.read user/DiagnosticReport.read user/AllergyIntolerance.read "
    "user/Practitioner.read user/Person.read offline_access",
)

# Session configuration
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "cds_session")
SESSION_TTL_SECONDS = int(os.getenv("SESSION_TTL_SECONDS", "28800"))
SESSION_COOKIE_SECURE = os.getenv("SESSION_COOKIE_SECURE", "false").lower() == "true"

HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", "30"))

# Perplexity pplx-api (OpenAI compatible chat completions)
PPLX_API_KEY = os.getenv("PPLX_API_KEY")
PPLX_API_URL = os.getenv("PPLX_API_URL", "https://api.perplexity.ai/chat/completions")
PPLX_MODEL = os.getenv("PPLX_MODEL", "sonar-pro")
PPLX_TEMPERATURE = float(os.getenv("PPLX_TEMPERATURE", "0.3"))
PPLX_MAX_TOKENS = int(os.getenv("PPLX_MAX_TOKENS", "400"))

# FHIR resource queries served by the proxy endpoints
PATIENT_LIST_COUNT = 50
RESOURCE_COUNT = 20
FHIR_QUERIES = {
    "vitals": ("Observation", {"category": "vital-signs", "_sort": "-date"}),
    "labs": ("Observation", {"category": "laboratory", "_sort": "-date"}),
    "conditions": ("Condition", {"_sort": "-recorded-date"}),
    "medications": ("MedicationRequest", {"_sort": "-authoredon"}),
    "diagnostic-reports": ("DiagnosticReport", {"_sort": "-date"}),
}
