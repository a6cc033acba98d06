from .organization import Organization
from .patient_profile import PatientProfile

__all__ = [
    "Organization",
    "PatientProfile",
]
