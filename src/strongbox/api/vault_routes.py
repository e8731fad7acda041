# Strongbox - Vault API
#
# Endpoints used by the desktop shell to store integration credentials:
# - status (is OS secure storage protecting the master key?)
# - list secret names, get / set / delete one secret
#
# Every failure is returned as {success: false, message}; an unrecoverable
# master key is additionally flagged fatal so the UI can block vault use.

import logging
from typing import Any

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from ..keys import MasterKeyError
from ..services import get_services
from ..vault import VaultError
from .security import verify_session_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vault", tags=["vault"])


class SetSecretRequest(BaseModel):
    value: Any = None


class VaultStatusResponse(BaseModel):
    encryption_available: bool
    key_storage: str
    vault_exists: bool


def _fatal_response(error: Exception) -> JSONResponse:
    logger.critical("Vault blocked: %s", error)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "fatal": True, "message": str(error)},
    )


def _error_response(error: Exception) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_409_CONFLICT,
        content={"success": False, "fatal": False, "message": str(error)},
    )


@router.get("/status", response_model=VaultStatusResponse)
async def get_vault_status(token: str = Depends(verify_session_token)):
    """Report whether OS secure storage backs the master key."""
    services = get_services()
    vault = services.vault
    storage = services.key_manager.storage
    available = vault.is_encryption_available()
    return VaultStatusResponse(
        encryption_available=available,
        key_storage=storage.value if storage else ("wrapped" if available else "unwrapped"),
        vault_exists=vault.exists(),
    )


@router.get("/secrets")
async def list_secrets(token: str = Depends(verify_session_token)):
    """List stored secret names (values are never listed)."""
    try:
        keys = get_services().vault.keys()
    except MasterKeyError as e:
        return _fatal_response(e)
    except VaultError as e:
        return _error_response(e)
    return {"keys": keys}


@router.get("/secrets/{key}")
async def get_secret(key: str, token: str = Depends(verify_session_token)):
    """Return one secret; value is null when it is not stored."""
    try:
        value = get_services().vault.get(key)
    except MasterKeyError as e:
        return _fatal_response(e)
    except VaultError as e:
        return _error_response(e)
    return {"key": key, "value": value}


@router.put("/secrets/{key}")
async def set_secret(
    key: str,
    request: SetSecretRequest,
    token: str = Depends(verify_session_token)
):
    """Store one secret."""
    try:
        success, message = get_services().vault.set(key, request.value)
    except MasterKeyError as e:
        return _fatal_response(e)
    if not success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "fatal": False, "message": message},
        )
    return {"success": True, "message": message}


@router.delete("/secrets/{key}")
async def delete_secret(key: str, token: str = Depends(verify_session_token)):
    """Delete one secret (succeeds if it was not stored)."""
    try:
        success, message = get_services().vault.delete(key)
    except MasterKeyError as e:
        return _fatal_response(e)
    if not success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"success": False, "fatal": False, "message": message},
        )
    return {"success": True, "message": message}
