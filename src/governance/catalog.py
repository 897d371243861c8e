"""
Loads, parses, and caches the insights catalog YAML into strongly-typed objects.

The catalog is the single source of truth for:
  - the view schemas shown to the generator (columns, date column, statuses)
  - the canned fallback reports and the default one
  - the column used for per-user row scoping on direct reads

The view whitelist itself is a code constant (``ALLOWED_VIEWS``); the YAML may
only describe views inside it.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from functools import lru_cache
from typing import Any

import yaml

_CATALOG_PATH = Path(__file__).resolve().parents[2] / "semantic_layer" / "insights_catalog.yml"

ALLOWED_VIEWS: frozenset[str] = frozenset({
    "vw_vendas",
    "vw_propostas",
    "vw_leads",
    "vw_visitas",
    "vw_obras",
    "vw_financeiro",
    "vw_clientes",
})

CHART_TYPES: tuple[str, ...] = ("table", "bar", "line", "pie")


# ── Typed domain objects ─────────────────────────────────

@dataclass(frozen=True)
class StatusGroup:
    name: str
    values: tuple[str, ...]
    terms: tuple[str, ...] = ()


@dataclass(frozen=True)
class ViewSchema:
    name: str
    description: str
    columns: tuple[str, ...]
    date_column: str
    status_column: str | None = None
    statuses: tuple[StatusGroup, ...] = ()

    def has_column(self, column: str) -> bool:
        return column in self.columns


@dataclass(frozen=True)
class FallbackReport:
    key: str
    sql: str
    chart: str
    x: str
    y: tuple[str, ...]
    description: str


@dataclass
class InsightsCatalog:
    """Fully parsed catalog."""

    version: int
    views: dict[str, ViewSchema]                 # keyed by view name
    fallback_reports: dict[str, FallbackReport]  # keyed by report key
    default_fallback_key: str
    scope_column: str = "user_id"

    # ── Convenience look-ups ─────────────────────────

    def view(self, name: str) -> ViewSchema | None:
        return self.views.get(name.lower())

    def lookup(self, key: str | None) -> FallbackReport | None:
        if not key:
            return None
        return self.fallback_reports.get(key)

    @property
    def default_fallback(self) -> FallbackReport:
        return self.fallback_reports[self.default_fallback_key]

    def get_view_names(self) -> list[str]:
        return list(self.views.keys())

    def get_reports_list(self) -> list[dict[str, Any]]:
        """Return fallback reports as a list of dicts (for API responses)."""
        return [
            {"key": r.key, "description": r.description, "chart": r.chart}
            for r in self.fallback_reports.values()
        ]

    def get_views_list(self) -> list[dict[str, Any]]:
        """Return view schemas as a list of dicts (for API responses)."""
        return [
            {
                "name": v.name,
                "description": v.description,
                "columns": list(v.columns),
                "date_column": v.date_column,
            }
            for v in self.views.values()
        ]

    def schema_context(self) -> str:
        """Plain-text description of the whitelisted views for the generator prompt."""
        lines: list[str] = []
        for v in self.views.values():
            lines.append(f"- {v.name}: {v.description}")
            lines.append(f"  colunas: {', '.join(v.columns)}")
            if v.statuses and v.status_column:
                groups = "; ".join(
                    f"{g.name} = {', '.join(g.values)}" for g in v.statuses
                )
                lines.append(f"  {v.status_column}: {groups}")
        return "\n".join(lines)


# ── Parsing ──────────────────────────────────────────────

def _parse_status(name: str, raw: dict[str, Any]) -> StatusGroup:
    return StatusGroup(
        name=name,
        values=tuple(raw.get("values") or []),
        terms=tuple(raw.get("terms") or []),
    )


def _parse_view(raw: dict[str, Any]) -> ViewSchema:
    name = raw["name"].lower()
    if name not in ALLOWED_VIEWS:
        raise ValueError(f"Catalog view '{name}' is not in the allowed view whitelist")
    statuses = raw.get("statuses") or {}
    return ViewSchema(
        name=name,
        description=raw.get("description", ""),
        columns=tuple(raw.get("columns") or []),
        date_column=raw.get("date_column", "periodo_dia"),
        status_column=raw.get("status_column"),
        statuses=tuple(_parse_status(k, v) for k, v in statuses.items()),
    )


def _parse_report(raw: dict[str, Any]) -> FallbackReport:
    chart = raw.get("chart", "table")
    if chart not in CHART_TYPES:
        raise ValueError(f"Fallback report '{raw['key']}' has unknown chart type '{chart}'")
    return FallbackReport(
        key=raw["key"],
        sql=raw["sql"].strip(),
        chart=chart,
        x=raw.get("x") or "",
        y=tuple(raw.get("y") or []),
        description=raw.get("description", ""),
    )


def _parse_catalog(raw_yaml: dict[str, Any]) -> InsightsCatalog:
    views = {v.name: v for v in (_parse_view(r) for r in raw_yaml.get("views", []))}
    reports = {r.key: r for r in (_parse_report(r) for r in raw_yaml.get("fallback_reports", []))}
    default_key = raw_yaml.get("default_fallback", "")
    if default_key not in reports:
        raise ValueError(f"Default fallback '{default_key}' is not a defined report")
    return InsightsCatalog(
        version=raw_yaml.get("version", 1),
        views=views,
        fallback_reports=reports,
        default_fallback_key=default_key,
        scope_column=raw_yaml.get("scope_column", "user_id"),
    )


# ── Public API ───────────────────────────────────────────

@lru_cache
def load_catalog() -> InsightsCatalog:
    """Load and cache the insights catalog from YAML."""
    with open(_CATALOG_PATH, encoding="utf-8") as f:
        raw = yaml.safe_load(f)
    return _parse_catalog(raw)


def lookup(key: str | None) -> FallbackReport | None:
    return load_catalog().lookup(key)
