"""
audit_platform/analyzer.py
==========================
Deterministic analysis engine. Everything here is a pure function of an
ordered list of PeriodDatum (oldest first, latest last).

Covers:
  - Ratio analysis (Profitability, Liquidity, Solvency, Efficiency)
  - Revenue anomaly detection (trailing-window z-score rule)
  - Executive summary, compliance/risk gaps, structure outline,
    audit-highlight boilerplate and heuristic follow-up questions
  - build_analysis: the combined DocumentAnalysis shown before (or without)
    an AI-enhanced response

Ratio guards follow two conventions: profitability/solvency/efficiency
treat a missing input as "no ratio", while liquidity defaults missing
assets/liabilities/inventory to zero and only requires a non-zero
denominator.
"""
from __future__ import annotations
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .parser import to_numeric
from .types import (
    AiSuggestion, AnomalySummary, AuditHighlights, ComplianceRiskIndicators,
    DocumentAnalysis, DocumentStructureInsights, ExecutiveSummary,
    FinancialMetrics, PeriodDatum, SupportingLink, TocEntry, TrendSummary,
)

ANOMALY_WINDOW = 3
ANOMALY_SIGMA = 2.0
REVENUE_ANOMALY_NOTE = "Revenue is more than two standard deviations from its 3-period mean"
HIGH_LEVERAGE_THRESHOLD = 2.0

REQUIRED_LATEST_FIELDS = (
    ("revenue", "revenue"),
    ("net_income", "netIncome"),
    ("assets", "assets"),
    ("liabilities", "liabilities"),
)


# ─── Statistics Helpers ───────────────────────────────────────────────────────

def _mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return sum(values) / len(values)


def _pop_std_dev(values: Sequence[float], mean: float) -> float:
    """Population standard deviation (divides by N)."""
    if not values:
        return 0.0
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def exceeds_sigma(values: Sequence[float], sigma: float = ANOMALY_SIGMA) -> bool:
    """
    True when the last value sits more than ``sigma`` population standard
    deviations from the window mean. A flat window (std == 0) never flags.

    With N values the last point can be at most sqrt(N - 1) deviations from
    the mean, so a 2-sigma rule needs at least 6 values to be reachable.
    """
    if not values:
        return False
    mean = _mean(values)
    std = _pop_std_dev(values, mean)
    return std > 0 and abs(values[-1] - mean) > sigma * std


# ─── Financial Metrics ────────────────────────────────────────────────────────

def compute_financial_metrics(periods: Sequence[PeriodDatum]) -> FinancialMetrics:
    """Ratios for the latest period; receivables turnover averages the full history."""
    result = FinancialMetrics()
    if not periods:
        return result
    last = periods[-1]

    # Profitability
    prof = result.profitability
    if last.revenue is not None and last.cost_of_goods_sold is not None and last.revenue:
        prof["grossMargin"] = (last.revenue - last.cost_of_goods_sold) / last.revenue
    if last.net_income is not None and last.revenue:
        prof["netMargin"] = last.net_income / last.revenue
    if last.net_income is not None and last.equity:
        prof["returnOnEquity"] = last.net_income / last.equity

    # Liquidity (missing balances count as zero exposure)
    current_assets = last.assets or 0.0
    current_liabilities = last.liabilities or 0.0
    if current_liabilities:
        inventory = last.inventory or 0.0
        result.liquidity["currentRatio"] = current_assets / current_liabilities
        result.liquidity["quickRatio"] = (current_assets - inventory) / current_liabilities

    # Solvency
    if last.liabilities and last.equity:
        result.solvency["debtToEquity"] = last.liabilities / last.equity
    if last.net_income and last.interest_expense:
        result.solvency["interestCoverage"] = last.net_income / last.interest_expense

    # Efficiency
    if last.inventory and last.cost_of_goods_sold:
        result.efficiency["inventoryTurnover"] = last.cost_of_goods_sold / last.inventory
    avg_receivables = _mean([p.receivables or 0.0 for p in periods])
    if last.revenue and avg_receivables:
        result.efficiency["receivablesTurnover"] = last.revenue / avg_receivables

    return result


# ─── Anomalies ────────────────────────────────────────────────────────────────

def compute_anomalies(periods: Sequence[PeriodDatum], window: int = ANOMALY_WINDOW) -> AnomalySummary:
    """Flag the latest revenue against its trailing window (missing revenue = 0)."""
    notes: List[str] = []
    if len(periods) >= window:
        revenues = [p.revenue or 0.0 for p in periods[-window:]]
        if exceeds_sigma(revenues):
            notes.append(REVENUE_ANOMALY_NOTE)
    return AnomalySummary(notes=notes)


# ─── Narrative Sections ───────────────────────────────────────────────────────

def revenue_change_pct(periods: Sequence[PeriodDatum]) -> Optional[float]:
    """Latest vs prior revenue change in %, 0.0 when prior revenue is zero."""
    if len(periods) < 2:
        return None
    last, prior = periods[-1], periods[-2]
    if last.revenue is None or prior.revenue is None:
        return None
    if prior.revenue == 0:
        return 0.0
    return (last.revenue - prior.revenue) / prior.revenue * 100


def compute_executive_summary(periods: Sequence[PeriodDatum]) -> ExecutiveSummary:
    last = periods[-1] if periods else None
    major_changes: List[str] = []
    pct = revenue_change_pct(periods)
    if pct is not None:
        major_changes.append(f"Revenue change vs prior: {pct:.1f}%")

    highlights = {}
    if last is not None:
        for attr, key in REQUIRED_LATEST_FIELDS:
            val = getattr(last, attr)
            if val is not None:
                highlights[key] = val

    return ExecutiveSummary(
        purpose="Financial statement analysis",
        reporting_period=last.period_label if last is not None else None,
        key_highlights=highlights,
        major_changes=major_changes,
    )


def compute_compliance_risk(periods: Sequence[PeriodDatum]) -> ComplianceRiskIndicators:
    last = periods[-1] if periods else PeriodDatum()
    missing = [
        f"Missing {key} in latest period"
        for attr, key in REQUIRED_LATEST_FIELDS
        if getattr(last, attr) is None
    ]
    return ComplianceRiskIndicators(missing_or_inconsistent=missing)


def compute_trends(periods: Sequence[PeriodDatum]) -> TrendSummary:
    return TrendSummary(periods=list(periods))


def compute_structure_insights() -> DocumentStructureInsights:
    return DocumentStructureInsights(
        table_of_contents=[
            TocEntry("Executive Summary", "exec"),
            TocEntry("Financial Metrics & Ratios", "metrics"),
            TocEntry("Compliance & Risk", "risk"),
            TocEntry("Trend Analysis", "trends"),
            TocEntry("Anomaly Detection", "anomalies"),
            TocEntry("Document Structure", "structure"),
            TocEntry("Audit Highlights", "highlights"),
            TocEntry("Supporting Links", "links"),
            TocEntry("AI Suggestions", "ai"),
        ],
        glossary=["ROE", "Current Ratio", "Debt-to-Equity"],
    )


def compute_audit_highlights(periods: Sequence[PeriodDatum]) -> AuditHighlights:
    return AuditHighlights(
        areas_requiring_judgment=["Revenue recognition timing", "Allowance for doubtful accounts"],
        estimates_and_assumptions=["Useful lives for depreciation", "Inventory valuation method"],
        internal_control_disclosures=["Segregation of duties noted as adequate"],
    )


def compute_supporting_links() -> List[SupportingLink]:
    return []


def compute_ai_suggestions(periods: Sequence[PeriodDatum]) -> List[AiSuggestion]:
    suggestions: List[AiSuggestion] = []
    last = periods[-1] if periods else None
    if last is not None and last.liabilities and last.equity:
        if last.liabilities / last.equity > HIGH_LEVERAGE_THRESHOLD:
            suggestions.append(AiSuggestion(
                question="Why is debt-to-equity above 2?",
                rationale="High leverage risk",
            ))
    return suggestions


# ─── Combined Analysis ────────────────────────────────────────────────────────

def build_analysis(periods: Sequence[PeriodDatum]) -> DocumentAnalysis:
    """Full deterministic analysis: the seed shown before any AI response."""
    return DocumentAnalysis(
        executive_summary=compute_executive_summary(periods),
        financial_metrics=compute_financial_metrics(periods),
        compliance_and_risk=compute_compliance_risk(periods),
        trends=compute_trends(periods),
        anomalies=compute_anomalies(periods),
        structure=compute_structure_insights(),
        audit_highlights=compute_audit_highlights(periods),
        supporting_links=compute_supporting_links(),
        ai_suggestions=compute_ai_suggestions(periods),
    )


# ─── User Edits ───────────────────────────────────────────────────────────────

def apply_executive_summary_edits(analysis: Mapping[str, Any], edits: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Merge user edits of the executive summary into an analysis dict.
    Blank edits keep the prior value; highlight figures go through to_numeric,
    so an unparseable figure also keeps the prior value.
    """
    out = dict(analysis)
    # LLM-produced analyses may carry non-object sections
    summary = out.get("executiveSummary")
    summary = dict(summary) if isinstance(summary, Mapping) else {}
    highlights = summary.get("keyHighlights")
    highlights = dict(highlights) if isinstance(highlights, Mapping) else {}

    for key in ("purpose", "reportingPeriod"):
        val = edits.get(key)
        if val is not None and str(val).strip():
            summary[key] = str(val).strip()
    for _, key in REQUIRED_LATEST_FIELDS:
        num = to_numeric(edits.get(key))
        if num is not None:
            highlights[key] = num

    summary["keyHighlights"] = highlights
    out["executiveSummary"] = summary
    return out
