from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter

from ticketing.api.errors import http_error_from_service
from ticketing.api.v1.payments import registration_out
from ticketing.api.v1.schemas.payments import RegistrationOut
from ticketing.auth.deps import CurrentUser, DBSession
from ticketing.services import registration_service
from ticketing.services.exceptions import ServiceError

router = APIRouter(prefix="/events", tags=["events"])


@router.post("/{event_id}/register", response_model=RegistrationOut, status_code=201)
def register_for_free_event(event_id: UUID, user: CurrentUser, db: DBSession):
    try:
        result = registration_service.register_free_event(db, event_id=event_id, user=user)
    except ServiceError as err:
        raise http_error_from_service(err) from err

    return registration_out(result, "registered successfully")
