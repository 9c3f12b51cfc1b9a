"""
Presentation helpers for FHIR resources

Two consumers: the dashboard view (display rows per section) and the
plain-text summary that is sent to the LLM.
"""
from datetime import date, datetime

LOINC_SYSTEM = "http://loinc.org"
BP_PANEL_CODE = "85354-9"
BP_COMPONENT_CODES = {"8480-6", "8462-4"}  # systolic, diastolic

DASHBOARD_VITALS_LIMIT = 8
DASHBOARD_LABS_LIMIT = 5
AI_VITALS_LIMIT = 10
AI_LABS_LIMIT = 10
AI_REPORTS_LIMIT = 5


def _first_coding(concept):
    codings = (concept or {}).get("coding") or []
    return codings[0] if codings else {}


def _resources(entries):
    return [entry.get("resource") or {} for entry in entries or []]


def _present(resource, key):
    """Element is present, even when empty ({} or [])"""
    return resource.get(key) is not None


def _number(value):
    if isinstance(value, float) and not value.is_integer():
        return f"{value:.2f}"
    if isinstance(value, float):
        return str(int(value))
    return str(value)


def _plain(value):
    # a missing value is written as "undefined" in the summary text
    if value is None:
        return "undefined"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_name(resource) -> str:
    names = resource.get("name") or []
    if not names:
        return "Unknown"
    name = names[0]
    given = " ".join(name.get("given") or [])
    family = name.get("family") or ""
    return f"{given} {family}".strip() or "Unknown"


def format_date(value) -> str:
    """ISO calendar date for a FHIR date or dateTime, 'Unknown' if absent or unparseable"""
    if not value:
        return "Unknown"
    try:
        if len(value) == 10:
            return date.fromisoformat(value).isoformat()
        if len(value) in (4, 7):
            return value
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date().isoformat()
    except (TypeError, ValueError):
        return "Unknown"


def concept_name(concept, default="Unknown") -> str:
    """code.text first, then the first coding's display"""
    concept = concept or {}
    return concept.get("text") or _first_coding(concept).get("display") or default


def observation_name(observation) -> str:
    return concept_name(observation.get("code"))


def format_observation_value(observation) -> str:
    if _present(observation, "dataAbsentReason"):
        return _first_coding(observation["dataAbsentReason"]).get("display") or "N/A"

    components = observation.get("component") or []
    if components:
        parts = []
        for comp in components:
            display = _first_coding(comp.get("code")).get("display") or ""
            label = display.split(" ")[0] if display else ""
            quantity = comp.get("valueQuantity") or {}
            value = quantity.get("value")
            value = "" if value in (None, 0) else _number(value)
            parts.append(f"{label}: {value}{quantity.get('unit') or ''}")
        return " / ".join(parts)

    if observation.get("valueQuantity"):
        quantity = observation["valueQuantity"]
        unit = quantity.get("unit") or quantity.get("code") or ""
        return f"{_number(quantity.get('value'))} {unit}"

    if observation.get("valueCodeableConcept"):
        return concept_name(observation["valueCodeableConcept"], default="N/A")

    if observation.get("valueString"):
        return observation["valueString"]

    return "N/A"


def _has_loinc(observation, codes) -> bool:
    return any(
        coding.get("system") == LOINC_SYSTEM and coding.get("code") in codes
        for coding in (observation.get("code") or {}).get("coding") or []
    )


def is_blood_pressure_panel(observation) -> bool:
    return _has_loinc(observation, {BP_PANEL_CODE})


def is_standalone_bp_component(observation) -> bool:
    return _has_loinc(observation, BP_COMPONENT_CODES)


def displayable_vitals(entries):
    """
    Vital sign observations worth showing
    A blood pressure panel supersedes separate systolic/diastolic readings.
    """
    observations = _resources(entries)
    has_bp_panel = any(is_blood_pressure_panel(obs) for obs in observations)

    shown = []
    for obs in observations:
        if _present(obs, "dataAbsentReason") or _present(obs, "hasMember"):
            continue
        if has_bp_panel and is_standalone_bp_component(obs):
            continue
        shown.append(obs)
    return shown


def _status_code(concept):
    return _first_coding(concept).get("code")


def vital_rows(entries):
    return [
        {
            "id": obs.get("id"),
            "label": observation_name(obs),
            "value": format_observation_value(obs),
            "date": format_date(obs.get("effectiveDateTime")),
        }
        for obs in displayable_vitals(entries)[:DASHBOARD_VITALS_LIMIT]
    ]


def lab_rows(entries):
    return [
        {
            "id": obs.get("id"),
            "label": observation_name(obs),
            "value": format_observation_value(obs),
            "date": format_date(obs.get("effectiveDateTime")),
        }
        for obs in _resources(entries)[:DASHBOARD_LABS_LIMIT]
    ]


def condition_rows(entries):
    return [
        {
            "id": condition.get("id"),
            "label": concept_name(condition.get("code"), default="Unknown condition"),
            "status": _status_code(condition.get("clinicalStatus")) or "unknown",
            "date": format_date(condition.get("recordedDate")),
        }
        for condition in _resources(entries)
    ]


def medication_rows(entries):
    rows = []
    for med in _resources(entries):
        dosage = (med.get("dosageInstruction") or [{}])[0]
        rows.append({
            "id": med.get("id"),
            "label": concept_name(med.get("medicationCodeableConcept"), default="Unknown medication"),
            "dosage": dosage.get("text") or "No dosage info",
            "status": med.get("status") or "unknown",
        })
    return rows


def diagnostic_report_rows(entries):
    return [
        {
            "id": report.get("id"),
            "label": concept_name(report.get("code"), default="Unknown report"),
            "status": report.get("status") or "unknown",
            "date": format_date(report.get("effectiveDateTime")),
        }
        for report in _resources(entries)
    ]


def patient_row(patient):
    return {
        "id": patient.get("id"),
        "name": format_name(patient),
        "gender": patient.get("gender") or "Unknown",
        "birthDate": format_date(patient.get("birthDate")),
    }


# --- LLM summary -----------------------------------------------------------

def _coding_first_name(concept):
    # Observations prefer the coding display over code.text in the summary
    concept = concept or {}
    return _first_coding(concept).get("display") or concept.get("text") or "Unknown"


def _summary_vital_value(obs):
    if _present(obs, "valueQuantity"):
        quantity = obs["valueQuantity"]
        return f"{_plain(quantity.get('value'))} {quantity.get('unit') or ''}"
    if obs.get("valueString"):
        return obs["valueString"]
    if _present(obs, "component"):
        return ", ".join(
            f"{_plain(_first_coding(c.get('code')).get('display'))}: "
            f"{_plain((c.get('valueQuantity') or {}).get('value'))}"
            f"{(c.get('valueQuantity') or {}).get('unit') or ''}"
            for c in obs["component"]
        )
    return "N/A"


def _summary_lab_value(obs):
    if _present(obs, "valueQuantity"):
        quantity = obs["valueQuantity"]
        return f"{_plain(quantity.get('value'))} {quantity.get('unit') or ''}"
    if _present(obs, "valueCodeableConcept"):
        return concept_name(obs["valueCodeableConcept"], default="N/A")
    return "N/A"


def format_patient_data_for_ai(patient_data) -> str:
    """
    Markdown-ish summary of the patient's data for the recommendation prompt
    Sections without entries are left out; the result is empty when nothing is left.
    """
    lines = []

    vitals = patient_data.get("vitals") or []
    if vitals:
        lines.append("## Vital Signs:")
        valid = [
            obs for obs in _resources(vitals)
            if not _present(obs, "hasMember") and not _present(obs, "dataAbsentReason")
        ]
        for obs in valid[:AI_VITALS_LIMIT]:
            lines.append(f"- {_coding_first_name(obs.get('code'))}: {_summary_vital_value(obs)}")
        lines.append("")

    labs = patient_data.get("labs") or []
    if labs:
        lines.append("## Laboratory Results:")
        for obs in _resources(labs)[:AI_LABS_LIMIT]:
            lines.append(f"- {_coding_first_name(obs.get('code'))}: {_summary_lab_value(obs)}")
        lines.append("")

    conditions = patient_data.get("conditions") or []
    if conditions:
        lines.append("## Active Conditions:")
        for condition in _resources(conditions):
            name = concept_name(condition.get("code"))
            status = _status_code(condition.get("clinicalStatus")) or "unknown"
            lines.append(f"- {name} (Status: {status})")
        lines.append("")

    medications = patient_data.get("medications") or []
    if medications:
        lines.append("## Current Medications:")
        for med in _resources(medications):
            name = concept_name(med.get("medicationCodeableConcept"))
            dosage = ((med.get("dosageInstruction") or [{}])[0]).get("text") or "No dosage info"
            lines.append(f"- {name}: {dosage}")
        lines.append("")

    reports = patient_data.get("diagnosticReports") or []
    if reports:
        lines.append("## Recent Diagnostic Reports:")
        for report in _resources(reports)[:AI_REPORTS_LIMIT]:
            name = concept_name(report.get("code"))
            lines.append(f"- {name} (Status: {report.get('status') or 'unknown'})")
        lines.append("")

    return "\n".join(lines) + "\n" if lines else ""
