"""
api/routes/reports.py -- Vendor assessment reports.

Routes:
  GET    /api/reports                                    -- paginated list (any role)
         ?applicationId= &parsed= &reportType= &year= &page= &pageSize=
  POST   /api/reports                                    -- create (Admin, Security)
  POST   /api/reports/import                             -- import stub (Admin, Security)
  GET    /api/reports/application/{application_id}       -- an application's reports
  GET    /api/reports/application/{application_id}/by-year
  GET    /api/reports/year/{year}
  GET    /api/reports/{report_id}
  PATCH  /api/reports/{report_id}                        -- (Admin, Security)
  DELETE /api/reports/{report_id}                        -- (Admin, Security)
  GET    /api/reports/{report_id}/reconfirmatory         -- report + its re-tests
  PATCH  /api/reports/{report_id}/parse                  -- mark parsed (Admin, Security)

The import endpoint records the report as unparsed and returns a job id.
Nothing downloads or parses the document; a separate worker (or a human)
calls PATCH /parse once findings are entered.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import (
    PageResponse,
    ReportCreate,
    ReportImportRequest,
    ReportImportResponse,
    ReportParseRequest,
    ReportPatch,
    ReportResponse,
    ReportTypeEnum,
)
from auth.dependencies import require
from auth.models import Principal
from core.errors import NotFound, ValidationError
from tracker.models import Report
from tracker.store import ReportStore

logger = logging.getLogger("vmp.api")

router = APIRouter()


def _require_application(request: Request, application_id: str) -> None:
    if request.app.state.applications.get(application_id) is None:
        raise ValidationError("Application not found")


# ---------------------------------------------------------------------------
# Collection routes
# ---------------------------------------------------------------------------


@router.get("/reports", response_model=PageResponse[ReportResponse])
def list_reports(
    request: Request,
    application_id: str | None = Query(default=None, alias="applicationId"),
    parsed: bool | None = Query(default=None),
    report_type: ReportTypeEnum | None = Query(default=None, alias="reportType"),
    year: int | None = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=10, ge=1, le=1000, alias="pageSize"),
    _principal: Principal = Depends(require("reports.list")),
) -> PageResponse[ReportResponse]:
    reports: ReportStore = request.app.state.reports
    result = reports.list_page(
        page=page,
        page_size=page_size,
        application_id=application_id,
        parsed=parsed,
        report_type=report_type.value if report_type else None,
        year=year,
    )
    return PageResponse[ReportResponse].from_entity(result)


@router.post("/reports", response_model=ReportResponse, status_code=201)
def create_report(
    request: Request,
    body: ReportCreate,
    principal: Principal = Depends(require("reports.create")),
) -> ReportResponse:
    _require_application(request, body.application_id)
    report = request.app.state.reports.create(Report(**body.model_dump()))
    logger.info("Report %s created by %s", report.id, principal.id)
    return ReportResponse.from_entity(report)


@router.post("/reports/import", response_model=ReportImportResponse, status_code=201)
def import_report(
    request: Request,
    body: ReportImportRequest,
    principal: Principal = Depends(require("reports.import")),
) -> ReportImportResponse:
    """Register a report for import. Parsing is out of band."""
    _require_application(request, body.application_id)
    now = datetime.now(timezone.utc)
    report = request.app.state.reports.create(
        Report(
            application_id=body.application_id,
            vendor_name=body.vendor_name,
            drive_file_id=body.drive_file_id,
            file_name=f"VAPT_Report_{int(now.timestamp() * 1000)}.pdf",
            date_uploaded=now,
            report_date=now,
            report_type=body.report_type,
            original_report_id=body.original_report_id,
            year=now.year,
        )
    )
    job_id = f"job_{uuid.uuid4().hex[:12]}"
    logger.info("Import %s queued for report %s by %s", job_id, report.id, principal.id)
    return ReportImportResponse(message="Import started", job_id=job_id, report=ReportResponse.from_entity(report))


@router.get("/reports/application/{application_id}", response_model=list[ReportResponse])
def reports_by_application(
    request: Request,
    application_id: str,
    _principal: Principal = Depends(require("reports.by_application")),
) -> list[ReportResponse]:
    return [ReportResponse.from_entity(r) for r in request.app.state.reports.by_application(application_id)]


@router.get("/reports/application/{application_id}/by-year", response_model=dict[str, list[ReportResponse]])
def reports_by_application_grouped(
    request: Request,
    application_id: str,
    _principal: Principal = Depends(require("reports.by_application")),
) -> dict[str, list[ReportResponse]]:
    grouped = request.app.state.reports.grouped_by_year(application_id)
    return {str(year): [ReportResponse.from_entity(r) for r in items] for year, items in grouped.items()}


@router.get("/reports/year/{year}", response_model=list[ReportResponse])
def reports_by_year(
    request: Request,
    year: int,
    _principal: Principal = Depends(require("reports.by_year")),
) -> list[ReportResponse]:
    return [ReportResponse.from_entity(r) for r in request.app.state.reports.by_year(year)]


# ---------------------------------------------------------------------------
# Item routes
# ---------------------------------------------------------------------------


@router.get("/reports/{report_id}", response_model=ReportResponse)
def get_report(
    request: Request,
    report_id: str,
    _principal: Principal = Depends(require("reports.read")),
) -> ReportResponse:
    return ReportResponse.from_entity(request.app.state.reports.require(report_id))


@router.patch("/reports/{report_id}", response_model=ReportResponse)
def update_report(
    request: Request,
    report_id: str,
    body: ReportPatch,
    _principal: Principal = Depends(require("reports.update")),
) -> ReportResponse:
    changes = body.model_dump(exclude_unset=True)
    if any(changes.get(k, "") is None for k in ("application_id", "vendor_name", "report_type", "parsed")):
        raise ValidationError("applicationId, vendorName, reportType and parsed cannot be null")
    if "application_id" in changes:
        _require_application(request, changes["application_id"])
    report = request.app.state.reports.update(report_id, changes)
    if report is None:
        raise NotFound("Report not found")
    return ReportResponse.from_entity(report)


@router.delete("/reports/{report_id}", status_code=204)
def delete_report(
    request: Request,
    report_id: str,
    principal: Principal = Depends(require("reports.delete")),
) -> Response:
    if not request.app.state.reports.delete(report_id):
        raise NotFound("Report not found")
    logger.info("Report %s deleted by %s", report_id, principal.id)
    return Response(status_code=204)


@router.get("/reports/{report_id}/reconfirmatory", response_model=list[ReportResponse])
def reconfirmatory_reports(
    request: Request,
    report_id: str,
    _principal: Principal = Depends(require("reports.reconfirmatory")),
) -> list[ReportResponse]:
    return [ReportResponse.from_entity(r) for r in request.app.state.reports.reconfirmatory(report_id)]


@router.patch("/reports/{report_id}/parse", response_model=ReportResponse)
def mark_report_parsed(
    request: Request,
    report_id: str,
    body: ReportParseRequest,
    _principal: Principal = Depends(require("reports.parse")),
) -> ReportResponse:
    report = request.app.state.reports.mark_parsed(report_id, body.vulnerability_ids)
    if report is None:
        raise NotFound("Report not found")
    return ReportResponse.from_entity(report)
