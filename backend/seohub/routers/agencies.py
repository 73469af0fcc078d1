"""The caller's own agency."""

from fastapi import APIRouter
from fastapi import Depends
from fastapi import HTTPException
from fastapi import status

from seohub.dependencies.auth import get_current_user
from seohub.schemas.schemas import AgencyOut

router = APIRouter(prefix="/agencies", tags=["agencies"])


@router.get("/current", response_model=AgencyOut)
def read_current_agency(current_user=Depends(get_current_user)):
    if current_user.agency is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not associated with an agency")
    return current_user.agency
