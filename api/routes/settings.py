"""
api/routes/settings.py -- SLA due-date settings.

Routes:
  GET   /api/settings/due-dates   -- Admin or Security
  PATCH /api/settings/due-dates   -- Admin only

PATCH body: {autoAssignDueDates?, dueDateTimelines?: {Critical?, High?,
Medium?, Low?}}. Timelines merge per severity. A value outside 1..365 (or
not an integer) is a 400 naming the severity. Existing findings keep their
due dates.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import SlaSettingsPatch, SlaSettingsResponse
from auth.dependencies import require
from auth.models import Principal
from tracker.store import SlaSettingsStore

logger = logging.getLogger("vmp.api")

router = APIRouter()


@router.get("/settings/due-dates", response_model=SlaSettingsResponse)
def get_due_date_settings(
    request: Request,
    _principal: Principal = Depends(require("settings.read")),
) -> SlaSettingsResponse:
    store: SlaSettingsStore = request.app.state.sla_settings
    return SlaSettingsResponse.from_entity(store.get())


@router.patch("/settings/due-dates", response_model=SlaSettingsResponse)
def update_due_date_settings(
    request: Request,
    body: SlaSettingsPatch,
    principal: Principal = Depends(require("settings.update")),
) -> SlaSettingsResponse:
    store: SlaSettingsStore = request.app.state.sla_settings
    updated = store.update(body.model_dump(exclude_unset=True))
    logger.info("Due-date settings changed by %s", principal.id)
    return SlaSettingsResponse.from_entity(updated)
