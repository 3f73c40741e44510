"""Dispute endpoints: lifecycle, messages, evidence and resolution."""

import base64
import binascii

from fastapi import APIRouter, Query, Response, status
from fastapi.responses import FileResponse

from tradelink.data.schema import DisputePriority, DisputeStatus, DisputeType
from tradelink.services import (
    DisputeService,
    EvidenceService,
    NotFoundError,
    ResolutionDecision,
    ResolutionRecommendation,
    ResolutionService,
    ValidationError,
)

from ..deps import (
    AdminUser,
    CurrentUser,
    EvidenceDirDep,
    GatewayDep,
    HubDep,
    SessionDep,
)
from ..schemas import (
    AssignMediatorRequest,
    CompletenessResponse,
    DisputeCreateRequest,
    DisputeMessageRequest,
    DisputeMessageResponse,
    DisputePage,
    DisputeResponse,
    DisputeStatusRequest,
    EvidenceListResponse,
    EvidenceResponse,
    EvidenceUploadRequest,
    ReasonRequest,
)

router = APIRouter(prefix="/api/v1/disputes", tags=["Disputes"])


# ============================================================================
# Lifecycle
# ============================================================================


@router.post("", response_model=DisputeResponse, status_code=status.HTTP_201_CREATED)
def create_dispute(body: DisputeCreateRequest, actor: CurrentUser, session: SessionDep, hub: HubDep):
    """Open a dispute on an order; only its buyer or supplier may do so."""
    return DisputeService(session, hub).create_dispute(
        actor,
        order_id=body.order_id,
        title=body.title,
        description=body.description,
        type=body.type,
        priority=body.priority,
        amount=body.amount,
    )


@router.get("", response_model=DisputePage)
def list_disputes(
    actor: CurrentUser,
    session: SessionDep,
    dispute_status: DisputeStatus | None = Query(None, alias="status"),
    dispute_type: DisputeType | None = Query(None, alias="type"),
    priority: DisputePriority | None = None,
    buyer_id: int | None = None,
    supplier_id: int | None = None,
    mediator_id: int | None = None,
    search: str | None = None,
    sort_by: str = "created_at",
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
):
    return DisputeService(session).list_disputes(
        actor,
        status=dispute_status,
        type=dispute_type,
        priority=priority,
        buyer_id=buyer_id,
        supplier_id=supplier_id,
        mediator_id=mediator_id,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
        limit=limit,
        offset=offset,
    )


@router.get("/statistics")
def dispute_statistics(actor: AdminUser, session: SessionDep) -> dict:
    return DisputeService(session).statistics()


@router.get("/resolution-statistics")
def resolution_statistics(actor: AdminUser, session: SessionDep) -> dict:
    return ResolutionService(session).resolution_statistics()


@router.get("/evidence-statistics")
def evidence_statistics(actor: AdminUser, session: SessionDep, evidence_dir: EvidenceDirDep) -> dict:
    return EvidenceService(session, evidence_dir).statistics()


@router.get("/mediators/performance")
def mediator_performance(
    actor: AdminUser, session: SessionDep, mediator_id: int | None = None
) -> dict:
    return ResolutionService(session).mediator_performance(mediator_id)


@router.get("/{dispute_id}", response_model=DisputeResponse)
def get_dispute(dispute_id: int, actor: CurrentUser, session: SessionDep):
    return DisputeService(session).get_dispute(dispute_id, actor)


@router.post("/{dispute_id}/status", response_model=DisputeResponse)
def update_dispute_status(
    dispute_id: int, body: DisputeStatusRequest, actor: AdminUser, session: SessionDep, hub: HubDep
):
    return DisputeService(session, hub).update_status(dispute_id, body.status, actor)


@router.post("/{dispute_id}/assign", response_model=DisputeResponse)
def assign_mediator(
    dispute_id: int, body: AssignMediatorRequest, actor: AdminUser, session: SessionDep, hub: HubDep
):
    return DisputeService(session, hub).assign_mediator(dispute_id, body.mediator_id, actor)


@router.post("/{dispute_id}/escalate", response_model=DisputeResponse)
def escalate_dispute(
    dispute_id: int, body: ReasonRequest, actor: CurrentUser, session: SessionDep, hub: HubDep
):
    return DisputeService(session, hub).escalate(dispute_id, body.reason, actor)


# ============================================================================
# Messages
# ============================================================================


@router.get("/{dispute_id}/messages", response_model=list[DisputeMessageResponse])
def list_messages(dispute_id: int, actor: CurrentUser, session: SessionDep):
    """Thread oldest first; internal notes are only returned to admins."""
    return DisputeService(session).list_messages(dispute_id, actor)


@router.post(
    "/{dispute_id}/messages",
    response_model=DisputeMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_message(
    dispute_id: int, body: DisputeMessageRequest, actor: CurrentUser, session: SessionDep, hub: HubDep
):
    return DisputeService(session, hub).add_message(
        dispute_id,
        actor,
        body.message,
        attachments=body.attachments,
        is_internal=body.is_internal,
    )


# ============================================================================
# Evidence
# ============================================================================


@router.post(
    "/{dispute_id}/evidence", response_model=EvidenceResponse, status_code=status.HTTP_201_CREATED
)
def upload_evidence(
    dispute_id: int,
    body: EvidenceUploadRequest,
    actor: CurrentUser,
    session: SessionDep,
    evidence_dir: EvidenceDirDep,
):
    try:
        content = base64.b64decode(body.content_base64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Evidence content is not valid base64", code="INVALID_ENCODING") from None
    return EvidenceService(session, evidence_dir).upload_evidence(
        dispute_id, actor, body.filename, content, body.mimetype, notes=body.notes
    )


@router.get("/{dispute_id}/evidence", response_model=EvidenceListResponse)
def list_evidence(
    dispute_id: int, actor: CurrentUser, session: SessionDep, evidence_dir: EvidenceDirDep
):
    return EvidenceService(session, evidence_dir).list_evidence(dispute_id, actor)


@router.get("/{dispute_id}/evidence/completeness", response_model=CompletenessResponse)
def evidence_completeness(
    dispute_id: int, actor: AdminUser, session: SessionDep, evidence_dir: EvidenceDirDep
):
    return EvidenceService(session, evidence_dir).validate_completeness(dispute_id)


@router.get("/{dispute_id}/evidence/{evidence_id}/download")
def download_evidence(
    dispute_id: int,
    evidence_id: int,
    actor: CurrentUser,
    session: SessionDep,
    evidence_dir: EvidenceDirDep,
) -> FileResponse:
    service = EvidenceService(session, evidence_dir)
    evidence = service.get_evidence(evidence_id, actor)
    path = service.file_path(evidence)
    if evidence.dispute_id != dispute_id or not path.exists():
        raise NotFoundError(f"Evidence {evidence_id} not found")
    return FileResponse(path, media_type=evidence.mimetype, filename=evidence.original_name)


@router.delete("/{dispute_id}/evidence/{evidence_id}", status_code=status.HTTP_204_NO_CONTENT)
def remove_evidence(
    dispute_id: int,
    evidence_id: int,
    actor: CurrentUser,
    session: SessionDep,
    evidence_dir: EvidenceDirDep,
) -> Response:
    service = EvidenceService(session, evidence_dir)
    if service.get_evidence(evidence_id, actor).dispute_id != dispute_id:
        raise NotFoundError(f"Evidence {evidence_id} not found")
    service.remove_evidence(evidence_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Resolution
# ============================================================================


@router.get("/{dispute_id}/recommendation", response_model=ResolutionRecommendation)
def recommend_resolution(
    dispute_id: int, actor: AdminUser, session: SessionDep, evidence_dir: EvidenceDirDep
):
    """Rule-based suggestion to help the mediator decide."""
    return ResolutionService(session, evidence_dir=evidence_dir).analyze_dispute(dispute_id)


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse)
def resolve_dispute(
    dispute_id: int,
    body: ResolutionDecision,
    actor: AdminUser,
    session: SessionDep,
    gateway: GatewayDep,
    hub: HubDep,
):
    return ResolutionService(session, gateway, hub).resolve_dispute(dispute_id, body, actor)


@router.post("/{dispute_id}/reopen", response_model=DisputeResponse)
def reopen_dispute(
    dispute_id: int, body: ReasonRequest, actor: AdminUser, session: SessionDep, hub: HubDep
):
    return ResolutionService(session, hub=hub).reopen_dispute(dispute_id, body.reason, actor)


@router.post("/{dispute_id}/close", response_model=DisputeResponse)
def close_dispute(dispute_id: int, actor: AdminUser, session: SessionDep, hub: HubDep):
    return ResolutionService(session, hub=hub).close_dispute(dispute_id, actor)
