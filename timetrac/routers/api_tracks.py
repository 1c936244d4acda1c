from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.orm import Session

from ..core.config import AppSettings, get_settings
from ..crud.time_entries import delete_entry, list_entries, start_entry, stop_entry, update_entry
from ..db.session import get_db
from ..deps.auth import AuthContext, require_user
from ..schemas.time_entry import DeleteResponse, EntryOut, EntryStart, EntryStop, EntryUpdate

router = APIRouter(prefix="/api/tracks", tags=["tracks"])


@router.get("", response_model=list[EntryOut])
def api_list(
    limit: Optional[int] = Query(default=None, ge=1),
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    settings: AppSettings = Depends(get_settings),
):
    return list_entries(db, auth.user_id, limit, cap=settings.ENTRY_LIST_LIMIT)


@router.post("/start", response_model=EntryOut, status_code=status.HTTP_201_CREATED)
def api_start(
    payload: Optional[EntryStart] = Body(default=None),
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    settings: AppSettings = Depends(get_settings),
):
    data = payload.model_dump(exclude_unset=True) if payload else {}
    return start_entry(
        db,
        auth.user_id,
        data,
        default_color=settings.DEFAULT_ENTRY_COLOR,
        attempts=settings.START_RETRY_ATTEMPTS,
        backoff=settings.START_RETRY_BACKOFF,
    )


@router.post("/stop", response_model=EntryOut)
def api_stop(
    payload: Optional[EntryStop] = Body(default=None),
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
):
    entry_id = str(payload.id) if payload and payload.id else None
    return stop_entry(db, auth.user_id, entry_id)


@router.patch("/{entry_id}", response_model=EntryOut)
def api_update(
    entry_id: UUID,
    payload: EntryUpdate,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
    settings: AppSettings = Depends(get_settings),
):
    changes = payload.model_dump(exclude_unset=True)
    return update_entry(db, auth.user_id, str(entry_id), changes, default_color=settings.DEFAULT_ENTRY_COLOR)


@router.delete("/{entry_id}", response_model=DeleteResponse)
def api_delete(
    entry_id: UUID,
    auth: AuthContext = Depends(require_user),
    db: Session = Depends(get_db),
):
    delete_entry(db, auth.user_id, str(entry_id))
    return DeleteResponse()
