"""
services/alumni_service.py
--------------------------
Alumni invitations, scoped to the inviting institution.

Invitation state machine:
    invited --accept(userId)--> accepted   (terminal)
    invited --decline--------> rejected    (terminal)
    invited --resend---------> invited     (new code, refreshed invitedAt)

Invitation codes are 32 hex characters from `secrets`, unique across every
institution, and unusable once the invitation is accepted or rejected.
Administrative reads and writes only ever see records whose
institutionDomain matches the caller's.
"""

import math
import secrets
from typing import Any, Dict, List, Optional, Tuple

from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    GoneError,
    NotFoundError,
    PersistenceError,
    StateError,
    ValidationFailedError,
)
from app.core.logging import get_logger
from app.schemas.alumni import (
    AlumniInvitation,
    AlumniInvite,
    AlumniListResponse,
    InvitationStatus,
    InvitationVerification,
    Pagination,
)
from app.schemas.auth import Principal
from app.schemas.base import utcnow_iso
from app.services.notification_dispatcher import NotificationDispatcher
from app.services.record_store import ALUMNI, RecordStore
from app.services.tenant_registry import TenantRegistry

logger = get_logger(__name__)

INVITATION_CODE_LENGTH = 32
DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100

TERMINAL_STATUSES = (InvitationStatus.accepted, InvitationStatus.rejected)


def generate_invitation_code() -> str:
    return secrets.token_hex(INVITATION_CODE_LENGTH // 2)


class AlumniService:

    def __init__(
        self,
        store: RecordStore,
        registry: TenantRegistry,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self._store = store
        self._registry = registry
        self._dispatcher = dispatcher

    # ── Persistence ───────────────────────────────────────────────────────────

    async def _load(self) -> List[AlumniInvitation]:
        records = await self._store.load(ALUMNI, [])
        return [AlumniInvitation.model_validate(r) for r in records]

    async def _save(self, invitations: List[AlumniInvitation]) -> None:
        if not await self._store.save(ALUMNI, [i.to_record() for i in invitations]):
            raise PersistenceError("Could not persist alumni invitations; no changes were applied")

    @staticmethod
    def _scope(principal: Principal) -> str:
        domain = (principal.institution_domain or "").strip().lower()
        if not domain:
            raise AuthorizationError("No institution domain found for your account")
        return domain

    @staticmethod
    def _new_code(invitations: List[AlumniInvitation], previous: Optional[str] = None) -> str:
        taken = {i.invitation_code for i in invitations}
        while True:
            code = generate_invitation_code()
            if code != previous and code not in taken:
                return code

    def _branding_data(self, institution_domain: str) -> Dict[str, Any]:
        tenant = self._registry.by_institution_domain(institution_domain)
        if tenant is None:
            return {"institutionName": institution_domain, "branding": {}}
        branding = tenant.branding.to_record()
        branding["marketplaceName"] = branding.get("marketplaceName") or tenant.name
        return {"institutionName": branding["marketplaceName"], "branding": branding}

    # ── Administrative operations ─────────────────────────────────────────────

    async def invite(self, principal: Principal, body: AlumniInvite) -> AlumniInvitation:
        domain = self._scope(principal)
        email = str(body.email).strip().lower()

        async with self._store.lock(ALUMNI):
            invitations = await self._load()
            if any(i.email == email and i.institution_domain == domain for i in invitations):
                raise ConflictError("Alumni with this email has already been invited")

            invitation = AlumniInvitation(
                id=f"alum_{secrets.token_hex(8)}",
                institution_domain=domain,
                email=email,
                first_name=body.first_name,
                last_name=body.last_name,
                graduation_year=body.graduation_year,
                program=body.program,
                status=InvitationStatus.invited,
                invitation_code=self._new_code(invitations),
                invited_by=principal.user_id,
                invited_at=utcnow_iso(),
            )
            await self._save(invitations + [invitation])

        logger.info("Alumni invited", alumni_id=invitation.id, institution_domain=domain)
        self._dispatcher.dispatch(
            "alumniInvitation",
            invitation.email,
            {
                "firstName": invitation.first_name,
                "lastName": invitation.last_name,
                "email": invitation.email,
                "invitationCode": invitation.invitation_code,
                "graduationYear": invitation.graduation_year,
                "program": invitation.program,
                "invitedByName": principal.name,
                **self._branding_data(domain),
            },
            metadata={"alumniId": invitation.id, "institutionDomain": domain},
        )
        return invitation

    async def list(
        self,
        principal: Principal,
        status: Optional[InvitationStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        per_page: int = DEFAULT_PER_PAGE,
    ) -> AlumniListResponse:
        domain = self._scope(principal)
        items = [i for i in await self._load() if i.institution_domain == domain]

        if status is not None:
            items = [i for i in items if i.status == status]
        if search and search.strip():
            needle = search.strip().lower()
            items = [
                i for i in items
                if needle in i.first_name.lower()
                or needle in i.last_name.lower()
                or needle in i.email.lower()
            ]
        items.sort(key=lambda i: i.invited_at, reverse=True)

        per_page = min(max(1, per_page), MAX_PER_PAGE)
        page = max(1, page)
        total = len(items)
        start = (page - 1) * per_page
        return AlumniListResponse(
            items=items[start:start + per_page],
            pagination=Pagination(
                page=page,
                per_page=per_page,
                total=total,
                total_pages=math.ceil(total / per_page),
            ),
        )

    def _require_in_scope(
        self,
        invitations: List[AlumniInvitation],
        invitation_id: str,
        domain: str,
    ) -> AlumniInvitation:
        invitation = next((i for i in invitations if i.id == invitation_id), None)
        if invitation is None:
            raise NotFoundError("Alumni record not found")
        if invitation.institution_domain != domain:
            logger.warning(
                "Cross-institution alumni access refused",
                alumni_id=invitation_id,
                caller_domain=domain,
            )
            raise AuthorizationError(
                f"You can only manage alumni from your own institution ({domain})"
            )
        return invitation

    async def resend(self, principal: Principal, invitation_id: str) -> AlumniInvitation:
        domain = self._scope(principal)

        async with self._store.lock(ALUMNI):
            invitations = await self._load()
            invitation = self._require_in_scope(invitations, invitation_id, domain)
            if invitation.status == InvitationStatus.accepted:
                raise StateError("Cannot resend invitation for an already accepted alumni")

            refreshed = invitation.model_copy(update={
                "invitation_code": self._new_code(invitations, previous=invitation.invitation_code),
                "invited_at": utcnow_iso(),
                "status": InvitationStatus.invited,
                "rejected_at": None,
            })
            await self._save([refreshed if i.id == invitation_id else i for i in invitations])

        logger.info("Alumni invitation resent", alumni_id=invitation_id, institution_domain=domain)
        self._dispatcher.dispatch(
            "alumniReminder",
            refreshed.email,
            {
                "firstName": refreshed.first_name,
                "email": refreshed.email,
                "invitationCode": refreshed.invitation_code,
                **self._branding_data(domain),
            },
            metadata={"alumniId": refreshed.id, "institutionDomain": domain},
        )
        return refreshed

    async def delete(self, principal: Principal, invitation_id: str) -> None:
        domain = self._scope(principal)

        async with self._store.lock(ALUMNI):
            invitations = await self._load()
            self._require_in_scope(invitations, invitation_id, domain)
            await self._save([i for i in invitations if i.id != invitation_id])

        logger.info("Alumni record deleted", alumni_id=invitation_id, institution_domain=domain)

    # ── Code holder operations ────────────────────────────────────────────────

    @staticmethod
    def _find_by_code(invitations: List[AlumniInvitation], code: str) -> Tuple[int, AlumniInvitation]:
        for index, invitation in enumerate(invitations):
            if invitation.invitation_code == code:
                return index, invitation
        raise NotFoundError("Invalid invitation code")

    async def verify_invitation(self, code: str) -> InvitationVerification:
        if not code or len(code) != INVITATION_CODE_LENGTH:
            raise ValidationFailedError("Invalid invitation code format")

        _, invitation = self._find_by_code(await self._load(), code)
        if invitation.status == InvitationStatus.accepted:
            raise GoneError("This invitation has already been accepted")
        if invitation.status == InvitationStatus.rejected:
            raise GoneError("This invitation is no longer valid")
        return InvitationVerification.from_invitation(invitation)

    async def accept_invitation(self, code: str, user_id: str) -> AlumniInvitation:
        async with self._store.lock(ALUMNI):
            invitations = await self._load()
            index, invitation = self._find_by_code(invitations, code)
            if invitation.status == InvitationStatus.accepted:
                raise ConflictError("This invitation has already been accepted")
            if invitation.status == InvitationStatus.rejected:
                raise GoneError("This invitation is no longer valid")

            accepted = invitation.model_copy(update={
                "status": InvitationStatus.accepted,
                "accepted_at": utcnow_iso(),
                "user_id": user_id.strip()[:100],
            })
            invitations[index] = accepted
            await self._save(invitations)

        logger.info("Alumni invitation accepted", alumni_id=accepted.id, user_id=accepted.user_id)
        self._dispatcher.dispatch(
            "alumniWelcome",
            accepted.email,
            {
                "firstName": accepted.first_name,
                "lastName": accepted.last_name,
                **self._branding_data(accepted.institution_domain),
            },
            metadata={"alumniId": accepted.id, "institutionDomain": accepted.institution_domain},
        )
        return accepted

    async def decline_invitation(self, code: str) -> AlumniInvitation:
        async with self._store.lock(ALUMNI):
            invitations = await self._load()
            index, invitation = self._find_by_code(invitations, code)
            if invitation.status in TERMINAL_STATUSES:
                raise GoneError(f"This invitation has already been {invitation.status.value}")

            declined = invitation.model_copy(update={
                "status": InvitationStatus.rejected,
                "rejected_at": utcnow_iso(),
            })
            invitations[index] = declined
            await self._save(invitations)

        logger.info("Alumni invitation declined", alumni_id=declined.id)
        return declined
