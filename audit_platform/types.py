"""
audit_platform/types.py
=======================
Dataclasses for the audit analyzer's data structures, plus their JSON (wire)
form. Python attributes are snake_case; the wire form is camelCase, matching
the JSON an LLM is asked to produce and the shape stored in session state.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

# ─── Core Aliases ─────────────────────────────────────────────────────────────

Priority = Literal["Low", "Medium", "High"]
DocumentType = Literal["audit_report", "financial_statement", "tax_filing", "unknown"]
AgentRole = Literal["user", "system", "assistant", "context"]

# RatioGroup: {ratio_name: value}
RatioGroup = Dict[str, float]

# (python attribute, wire key) for every numeric period field, in display order
PERIOD_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("revenue", "revenue"),
    ("cost_of_goods_sold", "costOfGoodsSold"),
    ("operating_expenses", "operatingExpenses"),
    ("net_income", "netIncome"),
    ("assets", "assets"),
    ("liabilities", "liabilities"),
    ("equity", "equity"),
    ("interest_expense", "interestExpense"),
    ("inventory", "inventory"),
    ("receivables", "receivables"),
    ("payables", "payables"),
    ("cash_flow_from_operations", "cashFlowFromOperations"),
)


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


# ─── Period Data ──────────────────────────────────────────────────────────────

@dataclass
class PeriodDatum:
    """One reporting period. ``None`` means absent, which is not the same as zero."""
    period_label: str = ""
    revenue: Optional[float] = None
    cost_of_goods_sold: Optional[float] = None
    operating_expenses: Optional[float] = None
    net_income: Optional[float] = None
    assets: Optional[float] = None
    liabilities: Optional[float] = None
    equity: Optional[float] = None
    interest_expense: Optional[float] = None
    inventory: Optional[float] = None
    receivables: Optional[float] = None
    payables: Optional[float] = None
    cash_flow_from_operations: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"periodLabel": self.period_label}
        for attr, key in PERIOD_FIELDS:
            val = getattr(self, attr)
            if val is not None:
                out[key] = val
        return out

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PeriodDatum":
        """Build from the wire form. Non-numeric and non-finite values are treated as absent."""
        from .parser import to_numeric

        kwargs: Dict[str, Any] = {"period_label": str(payload.get("periodLabel") or "")}
        for attr, key in PERIOD_FIELDS:
            val = payload.get(key)
            if isinstance(val, (int, float)):
                kwargs[attr] = to_numeric(val)
        return cls(**kwargs)


# ─── Analysis Sections ────────────────────────────────────────────────────────

@dataclass
class FinancialMetrics:
    profitability: RatioGroup = field(default_factory=dict)
    liquidity: RatioGroup = field(default_factory=dict)
    solvency: RatioGroup = field(default_factory=dict)
    efficiency: RatioGroup = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "profitability": dict(self.profitability),
            "liquidity": dict(self.liquidity),
            "solvency": dict(self.solvency),
            "efficiency": dict(self.efficiency),
        }


@dataclass
class AnomalySummary:
    notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"notes": list(self.notes)}


@dataclass
class ExecutiveSummary:
    purpose: Optional[str] = None
    reporting_period: Optional[str] = None
    key_highlights: Dict[str, float] = field(default_factory=dict)
    major_changes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "purpose": self.purpose,
            "reportingPeriod": self.reporting_period,
            "keyHighlights": dict(self.key_highlights),
            "majorChanges": list(self.major_changes),
        })


@dataclass
class ComplianceRiskIndicators:
    missing_or_inconsistent: List[str] = field(default_factory=list)
    unusual_transactions: List[str] = field(default_factory=list)
    late_filings_or_delays: List[str] = field(default_factory=list)
    non_compliance_notes: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "missingOrInconsistent": list(self.missing_or_inconsistent),
            "unusualTransactions": list(self.unusual_transactions),
            "lateFilingsOrDelays": list(self.late_filings_or_delays),
            "nonComplianceNotes": list(self.non_compliance_notes),
        }


@dataclass
class TrendSummary:
    periods: List[PeriodDatum] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"periods": [p.to_dict() for p in self.periods]}


@dataclass
class TocEntry:
    title: str
    anchor: Optional[str] = None


@dataclass
class DocumentStructureInsights:
    table_of_contents: List[TocEntry] = field(default_factory=list)
    key_tables_and_figures: List[str] = field(default_factory=list)
    glossary: List[str] = field(default_factory=list)
    entity_relationships: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tableOfContents": [_drop_none({"title": t.title, "anchor": t.anchor})
                                for t in self.table_of_contents],
            "keyTablesAndFigures": list(self.key_tables_and_figures),
            "glossary": list(self.glossary),
            "entityRelationships": list(self.entity_relationships),
        }


@dataclass
class AuditHighlights:
    areas_requiring_judgment: List[str] = field(default_factory=list)
    estimates_and_assumptions: List[str] = field(default_factory=list)
    internal_control_disclosures: List[str] = field(default_factory=list)
    auditors_opinion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "areasRequiringJudgment": list(self.areas_requiring_judgment),
            "estimatesAndAssumptions": list(self.estimates_and_assumptions),
            "internalControlDisclosures": list(self.internal_control_disclosures),
            "auditorsOpinion": self.auditors_opinion,
        })


@dataclass
class SupportingLink:
    href: str
    description: Optional[str] = None


@dataclass
class AiSuggestion:
    question: str
    rationale: Optional[str] = None


@dataclass
class DocumentAnalysis:
    """
    Combined analysis. The deterministic path never fills the optional
    ai_questions / deeper_investigations / risks / opportunities lists;
    only LLM responses carry them.
    """
    executive_summary: ExecutiveSummary
    financial_metrics: FinancialMetrics
    compliance_and_risk: ComplianceRiskIndicators
    trends: TrendSummary
    anomalies: AnomalySummary
    structure: DocumentStructureInsights
    audit_highlights: AuditHighlights
    supporting_links: List[SupportingLink] = field(default_factory=list)
    ai_suggestions: List[AiSuggestion] = field(default_factory=list)
    ai_questions: Optional[List[str]] = None
    deeper_investigations: Optional[List[str]] = None
    risks: Optional[List[str]] = None
    opportunities: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "executiveSummary": self.executive_summary.to_dict(),
            "financialMetrics": self.financial_metrics.to_dict(),
            "complianceAndRisk": self.compliance_and_risk.to_dict(),
            "trends": self.trends.to_dict(),
            "anomalies": self.anomalies.to_dict(),
            "structure": self.structure.to_dict(),
            "auditHighlights": self.audit_highlights.to_dict(),
            "supportingLinks": [_drop_none({"href": l.href, "description": l.description})
                                for l in self.supporting_links],
            "aiSuggestions": [_drop_none({"question": s.question, "rationale": s.rationale})
                              for s in self.ai_suggestions],
            "aiQuestions": self.ai_questions,
            "deeperInvestigations": self.deeper_investigations,
            "risks": self.risks,
            "opportunities": self.opportunities,
        })


# ─── Action Items ─────────────────────────────────────────────────────────────

@dataclass
class ActionItem:
    id: str
    title: str
    owner: str = "Auditor"
    priority: Priority = "Medium"
    completed: bool = False

    @property
    def dedup_key(self) -> str:
        return self.title.strip().lower()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "owner": self.owner,
            "priority": self.priority,
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "ActionItem":
        priority = payload.get("priority")
        return cls(
            id=str(payload.get("id") or ""),
            title=str(payload.get("title") or ""),
            owner=str(payload.get("owner") or "Auditor"),
            priority=priority if priority in ("Low", "Medium", "High") else "Medium",
            completed=bool(payload.get("completed", False)),
        )


# ─── Agent / Ingestion ────────────────────────────────────────────────────────

@dataclass
class AgentMessage:
    role: AgentRole
    content: str

    def to_dict(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass
class AgentResult:
    new_messages: List[AgentMessage] = field(default_factory=list)
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def texts(self) -> List[str]:
        return [m.content for m in self.new_messages]


@dataclass
class ParsedUpload:
    kind: Literal["csv", "xlsx", "pdf", "html", "text", "unsupported"]
    periods: List[PeriodDatum] = field(default_factory=list)
    text: str = ""
