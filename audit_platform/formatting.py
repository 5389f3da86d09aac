"""
audit_platform/formatting.py
============================
Number, ratio and label formatting plus colour helpers for display.

Analyses accepted from the LLM are only checked for their three required
sections, so display code reads them through as_mapping / as_list and
tolerates any section being a string, number or list.
"""
from __future__ import annotations
import re
from typing import Any, Dict, List, Mapping, Optional


def format_compact(value: Optional[float], decimals: int = 1) -> str:
    """
    Format number with K / M / B suffixes.
    e.g. 1_250_000 → 1.2M, 950 → 950
    """
    if value is None:
        return "—"
    if value == 0:
        return "0"

    abs_val = abs(value)
    sign = "-" if value < 0 else ""

    if abs_val >= 1_000_000_000:
        return f"{sign}{abs_val / 1_000_000_000:,.{decimals}f}B"
    elif abs_val >= 1_000_000:
        return f"{sign}{abs_val / 1_000_000:,.{decimals}f}M"
    elif abs_val >= 1_000:
        return f"{sign}{abs_val / 1_000:,.{decimals}f}K"
    else:
        return f"{sign}{abs_val:,.0f}"


def format_percent(value: Optional[float], decimals: int = 1) -> str:
    """Format a fraction (0.25) as a percentage (25.0%)."""
    if value is None:
        return "—"
    return f"{value * 100:.{decimals}f}%"


def format_ratio(value: Optional[float], decimals: int = 2) -> str:
    if value is None:
        return "—"
    return f"{value:.{decimals}f}x"


# Ratios expressed as fractions of revenue/equity rather than multiples
PERCENT_RATIOS = {"grossMargin", "netMargin", "returnOnEquity"}


def format_metric(name: str, value: Optional[float]) -> str:
    return format_percent(value) if name in PERCENT_RATIOS else format_ratio(value)


def metric_label(name: str) -> str:
    """camelCase wire name → display label. e.g. "returnOnEquity" → "Return On Equity"."""
    words = re.sub(r'(?<!^)(?=[A-Z])', ' ', name).split()
    return ' '.join(w[:1].upper() + w[1:] for w in words)


def document_type_label(doc_type: str) -> str:
    return {
        "audit_report": "Audit Report",
        "financial_statement": "Financial Statement",
        "tax_filing": "Tax Filing",
    }.get(doc_type, "Unknown")


def get_priority_color(priority: str) -> str:
    return {"High": "#ef4444", "Medium": "#f59e0b", "Low": "#10b981"}.get(priority, "#6b7280")


# ─── Analysis Accessors ───────────────────────────────────────────────────────

def as_mapping(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


def as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def ratio_rows(metrics: Any) -> List[Dict[str, str]]:
    """Flatten financialMetrics into display rows, skipping malformed groups."""
    rows: List[Dict[str, str]] = []
    for group, ratios in as_mapping(metrics).items():
        for name, value in as_mapping(ratios).items():
            num = value if isinstance(value, (int, float)) and not isinstance(value, bool) else None
            rows.append({"Group": str(group).title(), "Ratio": metric_label(str(name)),
                         "Value": format_metric(str(name), num)})
    return rows
