"""SMART on FHIR clinical decision support dashboard backend"""

__version__ = "1.0.0"
