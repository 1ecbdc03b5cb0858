from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException

from survey_lifecycle.api.deps import get_current_actor, get_state_management_service
from survey_lifecycle.core.permissions import Actor
from survey_lifecycle.models.survey import Survey, SurveyAuditLog
from survey_lifecycle.schemas.survey import (
    ReviewPermissionRequest,
    StatusChangeRequest,
    SurveyCreate,
)
from survey_lifecycle.services.errors import (
    ErrorKind,
    PersistenceFailure,
    SurveyStatusError,
)
from survey_lifecycle.services.state_management_service import (
    StateManagementService,
    StatusChangeResult,
)

router = APIRouter(prefix="/surveys", tags=["surveys"])

_HTTP_STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.INVALID_STATUS: 400,
}


# ── Helpers ───────────────────────────────────────────────────────────────────


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _survey_to_dict(s: Survey, service: StateManagementService, now: datetime) -> dict:
    return {
        "id": str(s.id),
        "title": s.title,
        "description": s.description or "",
        "created_by": str(s.created_by) if s.created_by else None,
        "status": s.status,
        "effective_status": service.effective_status(s, now).value,
        "start_at": _iso(s.start_at),
        "end_at": _iso(s.end_at),
        "time_limit": s.time_limit,
        "allow_review": bool(s.allow_review),
        "created_at": _iso(s.created_at),
        "updated_at": _iso(s.updated_at),
    }


def _audit_to_dict(entry: SurveyAuditLog) -> dict:
    return {
        "id": str(entry.id),
        "survey_id": str(entry.survey_id),
        "user_id": str(entry.user_id) if entry.user_id else None,
        "action": entry.action,
        "details": entry.details or {},
        "created_at": _iso(entry.created_at),
    }


def _result_to_dict(result: StatusChangeResult, service: StateManagementService) -> dict:
    now = service.clock.now()
    return {
        "survey": _survey_to_dict(result.survey, service, now) if result.survey else None,
        "message": result.message,
        "error": result.error.value if result.error else None,
    }


def _raise_http(exc: SurveyStatusError) -> None:
    if isinstance(exc, PersistenceFailure):
        raise HTTPException(503, exc.message, headers={"Retry-After": "1"}) from exc
    raise HTTPException(_HTTP_STATUS_BY_KIND.get(exc.kind, 400), exc.message) from exc


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.get("")
async def list_surveys(
    status: str | None = None,
    actor: Actor = Depends(get_current_actor),
    service: StateManagementService = Depends(get_state_management_service),
):
    """List visible surveys; expired ones are synchronized to closed on the way out."""
    try:
        surveys = await service.list_surveys(actor, status=status)
    except SurveyStatusError as exc:
        _raise_http(exc)
    now = service.clock.now()
    return [_survey_to_dict(s, service, now) for s in surveys]


@router.post("", status_code=201)
async def create_survey(
    body: SurveyCreate,
    actor: Actor = Depends(get_current_actor),
    service: StateManagementService = Depends(get_state_management_service),
):
    try:
        survey = await service.create_survey(body, actor)
    except SurveyStatusError as exc:
        _raise_http(exc)
    return _survey_to_dict(survey, service, service.clock.now())


@router.get("/{survey_id}")
async def get_survey(
    survey_id: str,
    actor: Actor = Depends(get_current_actor),
    service: StateManagementService = Depends(get_state_management_service),
):
    try:
        survey = await service.get_survey(survey_id, actor)
    except SurveyStatusError as exc:
        _raise_http(exc)
    return _survey_to_dict(survey, service, service.clock.now())


@router.post("/{survey_id}/status")
async def change_survey_status(
    survey_id: str,
    body: StatusChangeRequest,
    actor: Actor = Depends(get_current_actor),
    service: StateManagementService = Depends(get_state_management_service),
):
    """Move a survey to another status.

    Business rejections answer 200 with ``survey: null`` and the reason in
    ``message``; only a store failure is an HTTP error (503, retryable).
    """
    try:
        result = await service.change_survey_status(survey_id, body.status, actor)
    except PersistenceFailure as exc:
        _raise_http(exc)
    return _result_to_dict(result, service)


@router.post("/{survey_id}/review-permission")
async def toggle_review_permission(
    survey_id: str,
    body: ReviewPermissionRequest,
    actor: Actor = Depends(get_current_actor),
    service: StateManagementService = Depends(get_state_management_service),
):
    try:
        result = await service.toggle_review_permission(survey_id, body.allow_review, actor)
    except PersistenceFailure as exc:
        _raise_http(exc)
    return _result_to_dict(result, service)


@router.get("/{survey_id}/audit-logs")
async def list_audit_logs(
    survey_id: str,
    actor: Actor = Depends(get_current_actor),
    service: StateManagementService = Depends(get_state_management_service),
):
    try:
        entries = await service.get_audit_logs(survey_id, actor)
    except SurveyStatusError as exc:
        _raise_http(exc)
    return [_audit_to_dict(e) for e in entries]
