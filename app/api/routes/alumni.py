"""
api/routes/alumni.py
--------------------
Alumni invitation endpoints.

Institution-admin (scoped to the caller's institution domain):
  POST   /education/alumni/invite
  GET    /education/alumni
  PUT    /education/alumni/{id}/resend
  DELETE /education/alumni/{id}

Public, authorised by possession of the invitation code:
  GET    /education/alumni/verify-invitation/{code}
  POST   /education/alumni/accept-invitation
  POST   /education/alumni/decline-invitation
"""

from typing import Optional

from fastapi import APIRouter, Query, status

from app.dependencies import EducationalAdmin, Services
from app.schemas.alumni import (
    AcceptInvitation,
    AlumniInvitation,
    AlumniInvite,
    AlumniListResponse,
    DeclineInvitation,
    InvitationStatus,
    InvitationVerification,
)

router = APIRouter(prefix="/education/alumni", tags=["Education: Alumni"])


@router.post(
    "/invite",
    response_model=AlumniInvitation,
    status_code=status.HTTP_201_CREATED,
    summary="Invite an alumnus",
)
async def invite_alumni(
    body: AlumniInvite,
    services: Services,
    admin: EducationalAdmin,
) -> AlumniInvitation:
    """The invitation email is queued; a delivery problem never fails the invite."""
    return await services.alumni.invite(admin, body)


@router.get("", response_model=AlumniListResponse, summary="List my institution's alumni")
async def list_alumni(
    services: Services,
    admin: EducationalAdmin,
    status: Optional[InvitationStatus] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200),
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=20, ge=1, alias="perPage"),
) -> AlumniListResponse:
    return await services.alumni.list(admin, status=status, search=search, page=page, per_page=per_page)


@router.get(
    "/verify-invitation/{code}",
    response_model=InvitationVerification,
    summary="Check an invitation code",
)
async def verify_invitation(code: str, services: Services) -> InvitationVerification:
    return await services.alumni.verify_invitation(code)


@router.post("/accept-invitation", response_model=AlumniInvitation, summary="Accept an invitation")
async def accept_invitation(body: AcceptInvitation, services: Services) -> AlumniInvitation:
    return await services.alumni.accept_invitation(body.invitation_code, body.user_id)


@router.post("/decline-invitation", response_model=AlumniInvitation, summary="Decline an invitation")
async def decline_invitation(body: DeclineInvitation, services: Services) -> AlumniInvitation:
    return await services.alumni.decline_invitation(body.invitation_code)


@router.put("/{alumni_id}/resend", response_model=AlumniInvitation, summary="Resend an invitation")
async def resend_invitation(
    alumni_id: str,
    services: Services,
    admin: EducationalAdmin,
) -> AlumniInvitation:
    return await services.alumni.resend(admin, alumni_id)


@router.delete(
    "/{alumni_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an alumni record",
)
async def delete_alumni(alumni_id: str, services: Services, admin: EducationalAdmin) -> None:
    await services.alumni.delete(admin, alumni_id)
