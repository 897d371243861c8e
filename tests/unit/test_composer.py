"""
Unit tests -- KPI rules, text answer, chart decision and next steps.
"""
from dataclasses import replace

from src.insights.composer import (
    SHOW_CHART_STEP,
    compose,
    compute_kpis,
    next_steps,
    text_response,
)
from src.insights.models import CandidateQuery


SALES_ROWS = [
    {"cliente": "Ana", "valor_total": 1000, "quantidade": 2},
    {"cliente": "Bruno", "valor_total": "234.56", "quantidade": 1},
]


# ── KPIs ─────────────────────────────────────────────────

def test_empty_rows():
    assert compute_kpis([]) == {"total_registros": 0}


def test_multi_row_kpis():
    kpis = compute_kpis(SALES_ROWS)
    assert kpis == {
        "valor_total": 1234.56,
        "quantidade": 3,
        "total_registros": 2,
        "ticket_medio": 617.28,
    }


def test_single_row_skips_quantity():
    kpis = compute_kpis([{"quantidade": 12, "valor_total": 4500}])
    assert "quantidade" not in kpis
    assert kpis["valor_total"] == 4500
    assert kpis["ticket_medio"] == 4500


def test_value_column_aliases():
    assert compute_kpis([{"receita": 10}, {"receita": 5}])["valor_total"] == 15
    assert compute_kpis([{"valor": 7}])["valor_total"] == 7


def test_margin_mean_ignores_non_positive():
    kpis = compute_kpis([{"margem_pct": 30}, {"margem_pct": 0}, {"margem_pct": 20}])
    assert kpis["margem_media"] == 25.0


def test_margin_all_zero_omitted():
    assert "margem_media" not in compute_kpis([{"margem_pct": 0}, {"margem_pct": None}])


def test_non_numeric_values_count_as_zero():
    kpis = compute_kpis([{"valor_total": "n/d"}, {"valor_total": 50}])
    assert kpis["valor_total"] == 50


def test_area_and_net_value():
    kpis = compute_kpis([{"m2_total": 120.5, "valor_liquido": 800}])
    assert kpis["m2_total"] == 120.5
    assert kpis["valor_liquido"] == 800
    assert "valor_total" not in kpis


# ── Text ─────────────────────────────────────────────────

def test_text_multi_row():
    text = text_response(SALES_ROWS, compute_kpis(SALES_ROWS))
    assert text == (
        "Encontrei 2 registros, quantidade total: 3, valor total: R$ 1.234,56, "
        "ticket médio: R$ 617,28. Período: sem filtro de data."
    )


def test_text_single_aggregate_row():
    rows = [{"quantidade": 12, "valor_total": 4500}]
    text = text_response(rows, compute_kpis(rows), period_used="2025-01-01 a 2025-01-31")
    assert text == "Há 12 registros, valor total: R$ 4.500,00. Período: 2025-01-01 a 2025-01-31."


def test_text_singular():
    rows = [{"quantidade": 1}]
    assert text_response(rows, compute_kpis(rows)) == "Há 1 registro. Período: sem filtro de data."


def test_text_margin():
    rows = [{"periodo_mes": "2025-01", "margem_pct": 30}, {"periodo_mes": "2025-02", "margem_pct": 20}]
    assert "margem média: 25,0%" in text_response(rows, compute_kpis(rows))


def test_text_without_kpis():
    rows = [{"cliente": "Ana"}]
    assert text_response(rows, compute_kpis(rows)) == "Encontrei 1 registro. Período: sem filtro de data."


def test_text_zero_rows():
    text = text_response([], {"total_registros": 0}, period_used="a partir de 2025-01-01")
    assert text.startswith("Não encontrei registros para esses critérios.")
    assert "ampliar o período" in text
    assert text.endswith("Período: a partir de 2025-01-01.")


def test_corrections_prefix_text():
    text = text_response([], {"total_registros": 0}, ["Ajustei 31/06/2025 para 2025-06-30"])
    assert text.startswith("Ajustei 31/06/2025 para 2025-06-30. Não encontrei")


# ── Chart decision ───────────────────────────────────────

def _bar():
    return CandidateQuery(sql="SELECT 1", chart_type="bar", x_axis="cliente", y_axis=["valor_total"])


def test_chart_shown_when_all_conditions_hold():
    answer = compose(SALES_ROWS, _bar(), chart_intent=True, view="vw_vendas")
    assert answer.wants_chart
    assert answer.chart_type == "bar"
    assert answer.x_axis == "cliente"
    assert answer.y_axis == ["valor_total"]


def test_no_chart_without_intent():
    answer = compose(SALES_ROWS, _bar(), chart_intent=False)
    assert not answer.wants_chart
    assert answer.chart_type == "table"


def test_no_chart_for_single_row():
    assert not compose(SALES_ROWS[:1], _bar(), chart_intent=True).wants_chart


def test_no_chart_without_axes():
    candidate = replace(_bar(), x_axis="")
    assert not compose(SALES_ROWS, candidate, chart_intent=True).wants_chart


def test_no_chart_for_table_type():
    candidate = replace(_bar(), chart_type="table")
    assert not compose(SALES_ROWS, candidate, chart_intent=True).wants_chart


# ── Next steps ───────────────────────────────────────────

def test_next_steps_offer_chart_for_many_rows():
    steps = next_steps("vw_vendas", 5, False)
    assert len(steps) == 3
    assert steps[-1] == SHOW_CHART_STEP


def test_next_steps_no_chart_offer_when_charted():
    assert SHOW_CHART_STEP not in next_steps("vw_vendas", 5, True)


def test_next_steps_single_row():
    assert SHOW_CHART_STEP not in next_steps("vw_propostas", 1, False)


def test_next_steps_unknown_view():
    assert next_steps(None, 4, False) == [SHOW_CHART_STEP]


def test_compose_without_suggestions():
    assert compose(SALES_ROWS, _bar(), view="vw_vendas", suggest=False).next_steps == []


def test_compose_suggests_chart_when_not_charted():
    answer = compose(SALES_ROWS, _bar(), chart_intent=False, view="vw_vendas")
    assert SHOW_CHART_STEP in answer.next_steps
