"""Backup API routes: create, list, and restore data directory backups."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..backup import BackupError
from ..core.config import RestoreStrategy
from ..services import get_services
from .security import verify_session_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/backups", tags=["backups"])


# ── Pydantic Models ──────────────────────────────────────────────────


class RestoreBackupRequest(BaseModel):
    path: Optional[str] = None
    strategy: Optional[RestoreStrategy] = None


# ── Routes ───────────────────────────────────────────────────────────


@router.post("")
async def create_backup(
    _token: str = Depends(verify_session_token),
):
    """Archive the data directory into a new backup."""
    try:
        package = get_services().backups.create_backup()
    except BackupError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"success": True, **package.to_dict()}


@router.get("")
async def list_backups(
    _token: str = Depends(verify_session_token),
):
    """List backup archives, newest first."""
    try:
        backups = get_services().backups.list_backups()
    except BackupError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"backups": [b.to_dict() for b in backups], "total": len(backups)}


@router.post("/restore")
async def restore_backup(
    body: RestoreBackupRequest,
    _token: str = Depends(verify_session_token),
):
    """Restore the data directory from a backup archive.

    A pre-restore safety backup is always written first.  An inconsistent
    outcome is returned with status 500 so the UI can point the user at
    the safety backup.
    """
    result = get_services().backups.restore_backup(body.path, strategy=body.strategy)
    if result.needs_manual_recovery:
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=result.to_dict(),
        )
    return result.to_dict()
