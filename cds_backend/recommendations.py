"""
AI recommendations through the Perplexity pplx-api (OpenAI compatible chat completions)
"""
import logging
from typing import List, Optional

import httpx
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from . import config
from .errors import LLMRequestError
from .formatting import format_patient_data_for_ai
from .sessions import require_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/ai", tags=["AI"])

NO_DATA_MESSAGE = (
    "No patient data available to generate recommendations. Please ensure the patient "
    "has recorded vitals, conditions, medications, or lab results."
)

PROMPT_TEMPLATE = """You are a clinical decision support assistant.

Analyze the following patient data and return a VERY SHORT summary in EXACTLY this format:

Out of range values:
- ...

Recommended actions:
- ...

Rules:
- Do NOT add any other headings or text.
- No explanations, no references, no citations, no markdown beyond the two headings and bullet points.
- Keep to 3–5 bullets per section.
- If nothing is out of range, write: "None clearly out of range based on provided data."

Patient data:
{patient_data}"""


class PatientData(BaseModel):
    """Bundle entries per section, as returned by the /api/patient/{id}/... endpoints"""
    vitals: List[dict] = []
    labs: List[dict] = []
    conditions: List[dict] = []
    medications: List[dict] = []
    diagnosticReports: List[dict] = []


class RecommendationRequest(BaseModel):
    patientId: Optional[str] = None
    patientData: PatientData = PatientData()


class RecommendationResponse(BaseModel):
    recommendations: str


def build_prompt(formatted_data: str) -> str:
    return PROMPT_TEMPLATE.format(patient_data=formatted_data)


def _error_details(response):
    try:
        return response.json()
    except ValueError:
        return response.text


async def generate_recommendations(formatted_data: str) -> str:
    """
    Send the formatted patient data to the LLM and return its text
    Raises LLMRequestError on any failure.
    """
    if not config.PPLX_API_KEY:
        raise LLMRequestError(500, "LLM API key not configured", "Set PPLX_API_KEY in the environment")

    payload = {
        "model": config.PPLX_MODEL,
        "messages": [{"role": "user", "content": build_prompt(formatted_data)}],
        "temperature": config.PPLX_TEMPERATURE,
        "max_tokens": config.PPLX_MAX_TOKENS,
    }
    headers = {
        "Authorization": f"Bearer {config.PPLX_API_KEY}",
        "Content-Type": "application/json",
    }

    logger.info(f"Sending request to {config.PPLX_API_URL} (model {config.PPLX_MODEL})")
    try:
        async with httpx.AsyncClient(timeout=config.HTTP_TIMEOUT) as client:
            response = await client.post(config.PPLX_API_URL, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"AI recommendations request failed: {e}")
        raise LLMRequestError(500, "Failed to generate recommendations", str(e))

    if response.status_code == 401:
        raise LLMRequestError(500, "Invalid LLM API key", "Please check the PPLX_API_KEY environment variable")
    if response.status_code == 429:
        raise LLMRequestError(500, "LLM API quota exceeded", _error_details(response))
    if response.status_code >= 400:
        details = _error_details(response)
        logger.error(f"AI recommendations error: HTTP {response.status_code}: {details}")
        raise LLMRequestError(500, "Failed to generate recommendations", details)

    try:
        return response.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError) as e:
        logger.error(f"Unexpected LLM response shape: {e}")
        raise LLMRequestError(500, "Failed to generate recommendations", "Malformed LLM response")


@router.post("/recommendations", response_model=RecommendationResponse)
async def ai_recommendations(body: RecommendationRequest, session: dict = Depends(require_session)):
    logger.info(f"Generating AI recommendations for patient: {body.patientId}")

    formatted_data = format_patient_data_for_ai(body.patientData.model_dump())
    logger.debug(f"Formatted patient data for AI:\n{formatted_data}")

    if not formatted_data.strip():
        return RecommendationResponse(recommendations=NO_DATA_MESSAGE)

    recommendations = await generate_recommendations(formatted_data)
    logger.info("AI recommendations generated successfully")
    return RecommendationResponse(recommendations=recommendations)
