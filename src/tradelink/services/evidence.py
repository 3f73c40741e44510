"""Dispute evidence files on local storage."""

import secrets
import time
from pathlib import Path

from sqlalchemy import event, func, select
from sqlalchemy.orm import Session

from tradelink.data.schema import Dispute, DisputeEvidence, DisputeStatus, DisputeType, UserRole
from tradelink.infrastructure.logging_config import get_logger
from tradelink.models.config import get_platform_policy, get_settings
from tradelink.services.actor import Actor
from tradelink.services.disputes import is_party
from tradelink.services.errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError

logger = get_logger(__name__)

_FILES_KEY = "tradelink_evidence_files"


@event.listens_for(Session, "after_commit")
def _apply_file_changes(session: Session) -> None:
    for staged, target in session.info.pop(_FILES_KEY, []):
        if staged is None:
            target.unlink(missing_ok=True)
        else:
            staged.replace(target)


@event.listens_for(Session, "after_soft_rollback")
def _discard_file_changes(session: Session, previous_transaction) -> None:
    for staged, _ in session.info.pop(_FILES_KEY, []):
        if staged is not None:
            staged.unlink(missing_ok=True)


class EvidenceService:
    """Dispute evidence storage.

    File writes and deletions are staged on the session and applied only
    when it commits.
    """

    def __init__(self, session: Session, evidence_dir: str | Path | None = None):
        self.session = session
        self.policy = get_platform_policy()
        self.evidence_dir = Path(evidence_dir or get_settings().evidence_dir)

    def _dispute_for(self, dispute_id: int, actor: Actor) -> Dispute:
        dispute = self.session.get(Dispute, dispute_id)
        if dispute is None or (not actor.is_admin and not is_party(dispute, actor)):
            raise NotFoundError(f"Dispute {dispute_id} not found")
        return dispute

    def validate_file(self, size: int, mimetype: str) -> None:
        max_size = self.policy.max_evidence_size
        if size > max_size:
            raise ValidationError(
                f"File size exceeds maximum limit of {max_size // (1024 * 1024)}MB", code="FILE_TOO_LARGE"
            )
        if mimetype not in self.policy.allowed_evidence_types:
            raise ValidationError(f"File type {mimetype} is not allowed", code="UNSUPPORTED_FILE_TYPE")

    @staticmethod
    def generate_filename(original_name: str) -> str:
        extension = Path(original_name).suffix.lower()
        return f"{int(time.time() * 1000)}_{secrets.token_hex(6)}{extension}"

    def file_path(self, evidence: DisputeEvidence) -> Path:
        return self.evidence_dir / str(evidence.dispute_id) / evidence.filename

    def _stage(self, staged: Path | None, target: Path) -> None:
        self.session.info.setdefault(_FILES_KEY, []).append((staged, target))

    def upload_evidence(
        self,
        dispute_id: int,
        actor: Actor,
        original_name: str,
        content: bytes,
        mimetype: str,
        notes: str | None = None,
    ) -> DisputeEvidence:
        dispute = self._dispute_for(dispute_id, actor)
        if dispute.status == DisputeStatus.CLOSED.value:
            raise ConflictError("Cannot add evidence to a closed dispute")
        if not content:
            raise ValidationError("Evidence file is empty")
        self.validate_file(len(content), mimetype)

        filename = self.generate_filename(original_name)
        target = self.evidence_dir / str(dispute.id) / filename
        target.parent.mkdir(parents=True, exist_ok=True)
        staged = target.with_name(f"{filename}.part")
        staged.write_bytes(content)
        self._stage(staged, target)

        evidence = DisputeEvidence(
            dispute_id=dispute.id,
            filename=filename,
            original_name=Path(original_name).name,
            size=len(content),
            mimetype=mimetype,
            uploaded_by=actor.user_id,
            user_type=actor.role.value,
            notes=notes,
        )
        self.session.add(evidence)
        self.session.flush()
        logger.info("evidence_uploaded", dispute_id=dispute.id, evidence_id=evidence.id, size=len(content))
        return evidence

    def list_evidence(self, dispute_id: int, actor: Actor) -> dict[str, list[DisputeEvidence]]:
        """Evidence grouped by uploader role."""
        dispute = self._dispute_for(dispute_id, actor)
        grouped: dict[str, list[DisputeEvidence]] = {role.value: [] for role in UserRole}
        stmt = (
            select(DisputeEvidence)
            .where(DisputeEvidence.dispute_id == dispute.id)
            .order_by(DisputeEvidence.uploaded_at, DisputeEvidence.id)
        )
        for evidence in self.session.scalars(stmt):
            grouped.setdefault(evidence.user_type, []).append(evidence)
        return grouped

    def get_evidence(self, evidence_id: int, actor: Actor) -> DisputeEvidence:
        evidence = self.session.get(DisputeEvidence, evidence_id)
        if evidence is None:
            raise NotFoundError(f"Evidence {evidence_id} not found")
        self._dispute_for(evidence.dispute_id, actor)
        return evidence

    def remove_evidence(self, evidence_id: int, actor: Actor) -> None:
        evidence = self.get_evidence(evidence_id, actor)
        if not actor.is_admin and evidence.uploaded_by != actor.user_id:
            raise PermissionDeniedError("Only the uploader or an admin can remove evidence")

        self._stage(None, self.file_path(evidence))
        self.session.delete(evidence)
        self.session.flush()
        logger.info("evidence_removed", evidence_id=evidence_id)

    def validate_completeness(self, dispute_id: int) -> dict:
        dispute = self.session.get(Dispute, dispute_id)
        if dispute is None:
            raise NotFoundError(f"Dispute {dispute_id} not found")

        files = list(self.session.scalars(select(DisputeEvidence).where(DisputeEvidence.dispute_id == dispute.id)))
        buyer_files = [f for f in files if f.user_type == UserRole.BUYER.value]
        supplier_files = [f for f in files if f.user_type == UserRole.SUPPLIER.value]

        missing: list[str] = []
        recommendations: list[str] = []

        if not buyer_files:
            missing.append("Buyer evidence")
            recommendations.append("Request buyer to provide supporting documentation")
        if not supplier_files:
            missing.append("Supplier evidence")
            recommendations.append("Request supplier to provide supporting documentation")

        if dispute.type == DisputeType.PRODUCT_QUALITY.value:
            if not any(f.mimetype.startswith("image/") for f in buyer_files + supplier_files):
                missing.append("Product images")
                recommendations.append("Request photos of the product showing quality issues")

        if dispute.type == DisputeType.SHIPPING_DELAY.value:
            names = [f.original_name.lower() for f in files]
            if not any("shipping" in name or "tracking" in name for name in names):
                missing.append("Shipping documentation")
                recommendations.append("Request shipping receipts and tracking information")

        return {"is_complete": not missing, "missing_evidence": missing, "recommendations": recommendations}

    def statistics(self) -> dict:
        files = list(self.session.scalars(select(DisputeEvidence)))
        dispute_count = self.session.scalar(select(func.count(Dispute.id)))

        distribution: dict[str, int] = {}
        for evidence in files:
            major = evidence.mimetype.split("/")[0]
            distribution[major] = distribution.get(major, 0) + 1

        return {
            "total_files": len(files),
            "total_size": sum(f.size for f in files),
            "file_type_distribution": distribution,
            "average_files_per_dispute": round(len(files) / dispute_count, 2) if dispute_count else 0.0,
        }
