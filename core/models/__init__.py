from .clinical_study import ClinicalStudy
from .survey import Survey
from .visit import Visit
from . import choices

__all__ = [
    "ClinicalStudy",
    "Survey",
    "Visit",
    "choices",
]
