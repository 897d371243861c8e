"""
GET /insights/reports, GET /insights/views -- metadata endpoints.
"""
from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel

from src.governance.catalog import load_catalog

router = APIRouter()


class ReportItem(BaseModel):
    key: str
    description: str
    chart: str


class ViewItem(BaseModel):
    name: str
    description: str
    columns: list[str]
    date_column: str


@router.get("/insights/reports", response_model=list[ReportItem])
def list_reports() -> list[ReportItem]:
    """Canned reports offered as quick buttons next to the question box."""
    catalog = load_catalog()
    return [ReportItem(**r) for r in catalog.get_reports_list()]


@router.get("/insights/views", response_model=list[ViewItem])
def list_views() -> list[ViewItem]:
    """Whitelisted views and the columns the generator is told about."""
    catalog = load_catalog()
    return [ViewItem(**v) for v in catalog.get_views_list()]
