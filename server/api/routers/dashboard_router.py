from fastapi import APIRouter, Depends

from api.deps import get_current_user_id, get_storage
from api.schemes import DashboardResponse
from backend.dashboard import build_dashboard
from backend.storage.base import Storage

router = APIRouter()


@router.get("/dashboard", response_model=DashboardResponse)
async def dashboard(
    user_id: str = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    return await build_dashboard(storage, user_id)
