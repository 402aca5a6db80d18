from fastapi import APIRouter
from pydantic import BaseModel

from ticketing.auth.deps import CurrentUser

router = APIRouter(prefix="/me", tags=["me"])


class MeOut(BaseModel):
    user_id: str
    email: str | None
    name: str | None
    phone_number: str | None


@router.get("", response_model=MeOut)
def me(user: CurrentUser):
    return MeOut(user_id=str(user.id), email=user.email, name=user.name, phone_number=user.phone_number)
