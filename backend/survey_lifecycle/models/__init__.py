from survey_lifecycle.models.base import Base
from survey_lifecycle.models.survey import Survey, SurveyAuditLog

__all__ = [
    "Base",
    "Survey",
    "SurveyAuditLog",
]
