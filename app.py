"""
app.py
======
Auditor Analyzer — Main Streamlit Application
Financial statement and audit document analysis with AI follow-up

Steps:
  1. Upload   (CSV / Excel periods, PDF / HTML / text documents, URL, pasted CSV)
  2. Dashboard
       Overview · Ratios · Trends · Compliance & Risk · Structure · Action Items · AI Assistant
"""

import json
from typing import Any, Dict, List, Optional

import httpx
import pandas as pd
import plotly.graph_objects as go
import streamlit as st

from audit_platform import config
from audit_platform.types import AgentMessage, PeriodDatum
from audit_platform.parser import (
    fetch_document, parse_csv_text, parse_upload, periods_to_frame,
)
from audit_platform.analyzer import apply_executive_summary_edits, build_analysis
from audit_platform.classifier import classify_document
from audit_platform.action_items import (
    add_action_item, items_to_dicts, merge_action_items, new_action_item,
    remove_action_item, update_action_item,
)
from audit_platform.agent import (
    AgentError, accept_analysis, add_usage, build_document_messages,
    build_policy_messages, build_upload_messages, run_agent,
)
from audit_platform.formatting import (
    as_list, as_mapping, document_type_label, format_compact, get_priority_color,
    metric_label, ratio_rows,
)

config.setup_logging()

# ─── Page Configuration ───────────────────────────────────────────────────────

st.set_page_config(
    page_title="Auditor Analyzer",
    page_icon="🧾",
    layout="wide",
    initial_sidebar_state="expanded",
    menu_items={
        "About": "Auditor Analyzer — financial statement & audit document analysis",
    },
)

# ─── Custom CSS ───────────────────────────────────────────────────────────────

st.markdown("""
<style>
    .main-header {
        background: linear-gradient(135deg, #0f766e 0%, #1e40af 100%);
        border-radius: 12px;
        padding: 1.2rem 1.5rem;
        color: white;
        margin-bottom: 1.5rem;
        box-shadow: 0 4px 20px rgba(15,118,110,0.3);
    }
    .main-header h1 { margin: 0; font-size: 1.6rem; font-weight: 700; letter-spacing: -0.02em; }
    .main-header p  { margin: 0.25rem 0 0; font-size: 0.85rem; opacity: 0.85; }

    .section-card {
        background: white;
        border: 1px solid #e2e8f0;
        border-radius: 10px;
        padding: 1.2rem;
        margin-bottom: 1rem;
        box-shadow: 0 1px 3px rgba(0,0,0,0.05);
    }
    .section-title {
        font-size: 0.95rem;
        font-weight: 600;
        color: #1e293b;
        margin-bottom: 0.75rem;
        padding-bottom: 0.5rem;
        border-bottom: 1px solid #f1f5f9;
    }

    .insight-positive { background:#dcfce7; color:#166534; padding:0.3rem 0.7rem; border-radius:6px; font-size:0.8rem; margin-bottom:0.35rem; display:block; }
    .insight-warning  { background:#fef9c3; color:#854d0e; padding:0.3rem 0.7rem; border-radius:6px; font-size:0.8rem; margin-bottom:0.35rem; display:block; }
    .insight-neutral  { background:#eff6ff; color:#1e40af; padding:0.3rem 0.7rem; border-radius:6px; font-size:0.8rem; margin-bottom:0.35rem; display:block; }

    .priority-pill { font-weight:600; padding:0.15rem 0.5rem; border-radius:4px; color:white; font-size:0.75rem; }

    div.stButton > button { border-radius: 8px; font-weight: 500; }
    .stTabs [data-baseweb="tab"] { font-size: 0.82rem; padding: 0.5rem 1rem; }
    [data-testid="metric-container"] { background: white; border: 1px solid #e2e8f0; border-radius: 10px; padding: 0.8rem; }
</style>
""", unsafe_allow_html=True)


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _make_plotly_colors() -> List[str]:
    return ["#0f766e", "#1e40af", "#f59e0b", "#ef4444", "#8b5cf6", "#10b981"]


def _build_line(periods: List[Dict[str, Any]], fields: Dict[str, str], title: str) -> go.Figure:
    fig = go.Figure()
    palette = _make_plotly_colors()
    labels = [p.get("periodLabel") or f"#{i + 1}" for i, p in enumerate(periods)]
    for i, (key, name) in enumerate(fields.items()):
        ys = [p.get(key) for p in periods]
        if all(v is None for v in ys): continue
        fig.add_trace(go.Scatter(
            x=labels, y=ys, name=name, mode="lines+markers",
            line=dict(color=palette[i % len(palette)], width=2.5),
            marker=dict(size=7),
        ))
    fig.update_layout(
        title=dict(text=title, font=dict(size=14, color="#1e293b")),
        paper_bgcolor="white", plot_bgcolor="#f8fafc",
        margin=dict(l=40, r=20, t=40, b=30),
        height=320, legend=dict(orientation="h", y=-0.2),
        font=dict(family="sans-serif", size=11, color="#64748b"),
        xaxis=dict(gridcolor="#e2e8f0"), yaxis=dict(gridcolor="#e2e8f0"),
    )
    return fig


def _ratio_table(metrics: Any) -> pd.DataFrame:
    return pd.DataFrame(ratio_rows(metrics), columns=["Group", "Ratio", "Value"])


def _bullets(items: Any, css: str = "insight-neutral") -> None:
    for item in as_list(items):
        st.markdown(f"<span class='{css}'>{item}</span>", unsafe_allow_html=True)


def _current_periods() -> List[PeriodDatum]:
    return [PeriodDatum.from_dict(p) for p in st.session_state["periods"]]


def _set_analysis(analysis: Dict[str, Any]) -> None:
    """Store an analysis and merge any new findings into the action items."""
    st.session_state["analysis"] = analysis
    st.session_state["action_items"] = items_to_dicts(
        merge_action_items(analysis, st.session_state["action_items"])
    )


def _run_agent_and_apply(messages: List[AgentMessage]) -> None:
    try:
        result = run_agent(messages)
    except AgentError as e:
        st.error(f"❌ Agent call failed: {e}")
        return
    st.session_state["token_usage"] = add_usage(st.session_state["token_usage"], result.usage)
    st.session_state["messages"].extend(m.to_dict() for m in messages if m.role == "user")
    st.session_state["messages"].extend(m.to_dict() for m in result.new_messages)

    analysis, replaced = accept_analysis(st.session_state["analysis"], result.texts)
    if replaced:
        _set_analysis(dict(analysis))
        st.success("✅ Analysis updated from AI response")


def _load_periods(periods: List[PeriodDatum], kind: str) -> None:
    st.session_state["periods"] = [p.to_dict() for p in periods]
    st.session_state["upload_kind"] = kind
    st.session_state["doc_type"] = None
    st.session_state["doc_text"] = ""
    _set_analysis(build_analysis(periods).to_dict())
    if st.session_state["auto_agent"]:
        _run_agent_and_apply(build_upload_messages(
            kind, st.session_state["context"], st.session_state["periods"],
        ))


def _load_document(text: str) -> None:
    doc_type = classify_document(text)
    st.session_state["doc_text"] = text
    st.session_state["doc_type"] = doc_type
    st.session_state["context"]["documentPurpose"] = doc_type
    if st.session_state["auto_agent"]:
        _run_agent_and_apply(build_document_messages(text, doc_type))


# ─── Session State ────────────────────────────────────────────────────────────

def _init_state() -> None:
    defaults = {
        "step": "upload",           # upload | dashboard
        "periods": [],
        "upload_kind": "csv",        # csv | xlsx
        "analysis": None,
        "action_items": [],
        "messages": [],
        "doc_text": "",
        "doc_type": None,
        "context": {"documentPurpose": "", "reportingPeriod": "", "entities": "", "userNotes": ""},
        "token_usage": {"promptTokens": 0, "completionTokens": 0, "totalTokens": 0, "requests": 0},
        "auto_agent": False,
    }
    for k, v in defaults.items():
        if k not in st.session_state:
            st.session_state[k] = v


_init_state()


# ─── Sidebar ──────────────────────────────────────────────────────────────────

with st.sidebar:
    st.markdown("""
    <div style='text-align:center; padding:0.5rem 0 1rem;'>
        <span style='font-size:2rem;'>🧾</span><br>
        <strong style='font-size:1rem; color:#0f766e;'>Auditor Analyzer</strong><br>
        <span style='font-size:0.72rem; color:#64748b;'>Ratios · Anomalies · AI follow-up</span>
    </div>
    """, unsafe_allow_html=True)

    st.markdown("---")
    st.subheader("🧭 Analyzer Context")
    ctx = st.session_state["context"]
    ctx["documentPurpose"] = st.text_input("Document purpose", ctx.get("documentPurpose", ""))
    ctx["reportingPeriod"] = st.text_input("Reporting period", ctx.get("reportingPeriod", ""))
    ctx["entities"] = st.text_input("Entities", ctx.get("entities", ""))
    ctx["userNotes"] = st.text_area("Notes", ctx.get("userNotes", ""), height=80)

    st.session_state["auto_agent"] = st.checkbox(
        "Ask AI after each upload",
        value=st.session_state["auto_agent"],
        help="Sends the parsed data or document to the LLM agent after loading",
    )

    st.markdown("---")
    usage = st.session_state["token_usage"]
    st.caption(
        f"AI requests: {usage['requests']} · tokens: {usage['totalTokens']:,} "
        f"({usage['promptTokens']:,} prompt / {usage['completionTokens']:,} completion)"
    )
    if not config.OPENAI_API_KEY:
        st.info("OPENAI_API_KEY not set: the assistant runs in offline echo mode.", icon="🔌")

    if st.session_state["step"] == "dashboard":
        st.markdown("---")
        if st.button("🔄 New Analysis", width='stretch'):
            for k in ["step", "periods", "analysis", "action_items", "messages", "doc_text", "doc_type"]:
                del st.session_state[k]
            st.rerun()


# ─── Main Header ─────────────────────────────────────────────────────────────

st.markdown("""
<div class='main-header'>
    <h1>🧾 Auditor Analyzer</h1>
    <p>Financial statement ratios, anomaly checks and audit follow-up with an AI assistant</p>
</div>
""", unsafe_allow_html=True)


# ═══════════════════════════════════════════════════════════════════════════════
# TAB RENDER FUNCTIONS
# ═══════════════════════════════════════════════════════════════════════════════

def _render_overview(analysis: Dict[str, Any]) -> None:
    summary = as_mapping(analysis.get("executiveSummary"))
    highlights = as_mapping(summary.get("keyHighlights"))

    c1, c2, c3, c4 = st.columns(4)
    for col, key in zip((c1, c2, c3, c4), ("revenue", "netIncome", "assets", "liabilities")):
        val = highlights.get(key)
        col.metric(metric_label(key), format_compact(val) if isinstance(val, (int, float)) else "—")

    st.markdown("<div class='section-title'>Executive Summary</div>", unsafe_allow_html=True)
    st.markdown(f"**Purpose:** {summary.get('purpose') or '—'}  \n"
                f"**Reporting period:** {summary.get('reportingPeriod') or '—'}")
    _bullets(summary.get("majorChanges"))

    notes = as_list(as_mapping(analysis.get("anomalies")).get("notes"))
    st.markdown("<div class='section-title'>Anomaly Detection</div>", unsafe_allow_html=True)
    if notes:
        _bullets(notes, "insight-warning")
    else:
        st.markdown("<span class='insight-positive'>No revenue anomalies detected</span>",
                    unsafe_allow_html=True)

    with st.expander("✏️ Edit executive summary"):
        with st.form("exec_summary_form"):
            purpose = st.text_input("Purpose", summary.get("purpose") or "")
            period = st.text_input("Reporting period", summary.get("reportingPeriod") or "")
            e1, e2, e3, e4 = st.columns(4)
            edits = {
                "revenue": e1.text_input("Revenue", str(highlights.get("revenue", ""))),
                "netIncome": e2.text_input("Net income", str(highlights.get("netIncome", ""))),
                "assets": e3.text_input("Assets", str(highlights.get("assets", ""))),
                "liabilities": e4.text_input("Liabilities", str(highlights.get("liabilities", ""))),
            }
            if st.form_submit_button("Save"):
                edits.update({"purpose": purpose, "reportingPeriod": period})
                st.session_state["analysis"] = apply_executive_summary_edits(analysis, edits)
                st.rerun()


def _render_ratios(analysis: Dict[str, Any]) -> None:
    df = _ratio_table(analysis.get("financialMetrics"))
    if df.empty:
        st.info("Not enough data to compute ratios.")
        return
    st.dataframe(df, width='stretch', hide_index=True)


def _render_trends(analysis: Dict[str, Any]) -> None:
    periods = [p for p in as_list(as_mapping(analysis.get("trends")).get("periods")) if isinstance(p, dict)]
    if not periods:
        st.info("No period data loaded.")
        return
    st.plotly_chart(
        _build_line(periods, {"revenue": "Revenue", "netIncome": "Net Income",
                              "cashFlowFromOperations": "Operating Cash Flow"},
                    "Revenue & Earnings"),
        width='stretch',
    )
    st.dataframe(periods_to_frame(_current_periods()), width='stretch', hide_index=True)


def _render_compliance(analysis: Dict[str, Any]) -> None:
    risk = as_mapping(analysis.get("complianceAndRisk"))
    sections = [
        ("Missing or inconsistent", "missingOrInconsistent"),
        ("Unusual transactions", "unusualTransactions"),
        ("Late filings or delays", "lateFilingsOrDelays"),
        ("Non-compliance notes", "nonComplianceNotes"),
    ]
    for title, key in sections:
        st.markdown(f"<div class='section-title'>{title}</div>", unsafe_allow_html=True)
        entries = as_list(risk.get(key))
        if entries:
            _bullets(entries, "insight-warning")
        else:
            st.caption("None noted")

    highlights = as_mapping(analysis.get("auditHighlights"))
    st.markdown("<div class='section-title'>Audit Highlights</div>", unsafe_allow_html=True)
    _bullets(highlights.get("areasRequiringJudgment"))
    _bullets(highlights.get("estimatesAndAssumptions"))
    _bullets(highlights.get("internalControlDisclosures"))
    if highlights.get("auditorsOpinion"):
        st.markdown(f"**Auditor's opinion:** {highlights['auditorsOpinion']}")


def _render_structure(analysis: Dict[str, Any]) -> None:
    structure = as_mapping(analysis.get("structure"))
    col1, col2 = st.columns(2)
    with col1:
        st.markdown("<div class='section-title'>Contents</div>", unsafe_allow_html=True)
        for entry in as_list(structure.get("tableOfContents")):
            if isinstance(entry, dict):
                st.markdown(f"- {entry.get('title', '')}")
    with col2:
        st.markdown("<div class='section-title'>Glossary</div>", unsafe_allow_html=True)
        _bullets(structure.get("glossary"))
    links = as_list(analysis.get("supportingLinks"))
    if links:
        st.markdown("<div class='section-title'>Supporting Links</div>", unsafe_allow_html=True)
        for link in links:
            if isinstance(link, dict) and link.get("href"):
                st.markdown(f"- [{link.get('description') or link['href']}]({link['href']})")


def _render_action_items() -> None:
    items = st.session_state["action_items"]
    open_count = sum(1 for it in items if not it.get("completed"))
    st.caption(f"{len(items)} items · {open_count} open")

    for item in items:
        c1, c2, c3, c4, c5 = st.columns([0.6, 5, 2, 2, 0.8])
        done = c1.checkbox("Done", value=item["completed"], key=f"done_{item['id']}",
                           label_visibility="collapsed")
        title = c2.text_input("Title", item["title"], key=f"title_{item['id']}",
                              label_visibility="collapsed")
        owner = c3.text_input("Owner", item["owner"], key=f"owner_{item['id']}",
                              label_visibility="collapsed")
        priority = c4.selectbox("Priority", ["Low", "Medium", "High"],
                                index=["Low", "Medium", "High"].index(item["priority"]),
                                key=f"prio_{item['id']}", label_visibility="collapsed")
        changes = {"completed": done, "title": title, "owner": owner, "priority": priority}
        if any(item[k] != v for k, v in changes.items()):
            st.session_state["action_items"] = items_to_dicts(
                update_action_item(st.session_state["action_items"], item["id"], changes)
            )
        if c5.button("🗑", key=f"del_{item['id']}"):
            st.session_state["action_items"] = items_to_dicts(
                remove_action_item(st.session_state["action_items"], item["id"])
            )
            st.rerun()
        c2.markdown(
            f"<span class='priority-pill' style='background:{get_priority_color(priority)};'>"
            f"{priority}</span>", unsafe_allow_html=True,
        )

    with st.form("new_item_form", clear_on_submit=True):
        n1, n2 = st.columns([4, 1])
        title = n1.text_input("New action item")
        priority = n2.selectbox("Priority", ["Low", "Medium", "High"], index=1)
        if st.form_submit_button("➕ Add") and title.strip():
            st.session_state["action_items"] = items_to_dicts(add_action_item(
                st.session_state["action_items"], new_action_item(title.strip(), priority),
            ))
            st.rerun()


def _render_ai(analysis: Optional[Dict[str, Any]]) -> None:
    suggestions = as_list(as_mapping(analysis).get("aiSuggestions"))
    if suggestions:
        st.markdown("<div class='section-title'>Suggested Questions</div>", unsafe_allow_html=True)
        for s in suggestions:
            if isinstance(s, dict):
                rationale = f" ({s['rationale']})" if s.get("rationale") else ""
                st.markdown(f"<span class='insight-neutral'>{s.get('question', '')}{rationale}</span>",
                            unsafe_allow_html=True)

    for m in st.session_state["messages"]:
        with st.chat_message("user" if m["role"] == "user" else "assistant"):
            st.markdown(m["content"])

    col1, col2 = st.columns(2)
    with col1:
        if st.session_state["periods"] and st.button("🤖 Analyze data with AI", width='stretch'):
            with st.spinner("Waiting for the assistant..."):
                _run_agent_and_apply(build_upload_messages(
                    st.session_state["upload_kind"], st.session_state["context"], st.session_state["periods"],
                ))
            st.rerun()
    with col2:
        if st.session_state["doc_text"] and st.button("🤖 Analyze document with AI", width='stretch'):
            with st.spinner("Waiting for the assistant..."):
                _run_agent_and_apply(build_document_messages(
                    st.session_state["doc_text"], st.session_state["doc_type"] or "unknown",
                ))
            st.rerun()

    with st.form("policy_form", clear_on_submit=True):
        policy = st.text_area("Auditor policy / follow-up instruction", height=100)
        if st.form_submit_button("Refine analysis") and policy.strip():
            state = {
                "analysis": st.session_state["analysis"],
                "actionItems": st.session_state["action_items"],
                "context": st.session_state["context"],
            }
            with st.spinner("Refining analysis..."):
                _run_agent_and_apply(build_policy_messages(state, policy))
            st.rerun()

    if analysis:
        st.download_button(
            "⬇️ Download analysis (JSON)",
            data=json.dumps({"analysis": analysis, "actionItems": st.session_state["action_items"]},
                            indent=2, default=str),
            file_name="audit_analysis.json", mime="application/json",
        )


# ═══════════════════════════════════════════════════════════════════════════════
# STEP 1: UPLOAD
# ═══════════════════════════════════════════════════════════════════════════════

if st.session_state["step"] == "upload":
    col1, col2 = st.columns([2, 1])

    with col1:
        st.markdown("### 📁 Upload Financials or Audit Documents")
        st.markdown("""
        <div style='background:#eff6ff; border-radius:8px; padding:0.8rem 1rem; margin-bottom:1rem;
                    border-left:4px solid #1e40af; font-size:0.85rem; color:#1e40af;'>
        <strong>Tabular:</strong> CSV (.csv) • Excel (.xlsx, .xls), one reporting period per row
        <br><strong>Documents:</strong> PDF • HTML • plain text (audit reports, statements, tax filings)
        </div>
        """, unsafe_allow_html=True)

        uploaded = st.file_uploader(
            "Upload a file",
            type=["csv", "xlsx", "xls", "pdf", "html", "htm", "txt"],
            label_visibility="collapsed",
        )
        if uploaded is not None and st.button("▶ Analyze Upload", type="primary", width='stretch'):
            with st.spinner("Parsing file..."):
                parsed = parse_upload(uploaded.read(), uploaded.name)
            if parsed.kind in ("csv", "xlsx"):
                if parsed.periods:
                    st.success(f"✅ {uploaded.name}: {len(parsed.periods)} periods")
                    _load_periods(parsed.periods, parsed.kind)
                    st.session_state["step"] = "dashboard"
                    st.rerun()
                else:
                    st.warning(f"⚠️ {uploaded.name}: No rows extracted")
            elif parsed.kind == "unsupported":
                st.error(f"❌ {uploaded.name}: unsupported file type")
            elif parsed.text.strip():
                _load_document(parsed.text)
                st.session_state["step"] = "dashboard"
                st.rerun()
            else:
                st.warning(f"⚠️ {uploaded.name}: No text extracted")

        with st.expander("📋 Paste CSV"):
            pasted = st.text_area("CSV with a header row", height=160,
                                  placeholder="period,revenue,cogs,netIncome,assets,liabilities,equity")
            if st.button("Analyze CSV", width='stretch') and pasted.strip():
                periods = parse_csv_text(pasted)
                if periods:
                    _load_periods(periods, "csv")
                    st.session_state["step"] = "dashboard"
                    st.rerun()
                else:
                    st.warning("⚠️ No rows could be parsed")

        with st.expander("🌐 Fetch from URL"):
            url = st.text_input("Document URL", placeholder="https://example.com/annual-report.pdf")
            if st.button("Fetch & Analyze", width='stretch') and url.strip():
                try:
                    with st.spinner("Fetching document..."):
                        content, name = fetch_document(url.strip(), timeout=config.FETCH_TIMEOUT_SECONDS)
                except httpx.HTTPError as e:
                    st.error(f"❌ Fetch failed: {e}")
                else:
                    parsed = parse_upload(content, name)
                    if parsed.text.strip():
                        _load_document(parsed.text)
                        st.session_state["step"] = "dashboard"
                        st.rerun()
                    else:
                        st.warning("⚠️ No text extracted from the fetched document")

    with col2:
        st.markdown("### 📋 What This Tool Does")
        st.markdown("""
        <div class='section-card' style='font-size:0.82rem;'>
        <div style='margin-bottom:0.5rem;'><strong>📐 Ratio Analysis</strong><br>
        Margins, ROE, liquidity, leverage, coverage and turnover for the latest period</div>
        <div style='margin-bottom:0.5rem;'><strong>📈 Trends & Anomalies</strong><br>
        Period history with a trailing-window revenue outlier check</div>
        <div style='margin-bottom:0.5rem;'><strong>🗂️ Document Classification</strong><br>
        Audit reports, financial statements and tax filings</div>
        <div><strong>✅ Action Items</strong><br>
        Follow-ups derived from findings, editable and deduplicated</div>
        </div>
        """, unsafe_allow_html=True)


# ═══════════════════════════════════════════════════════════════════════════════
# STEP 2: DASHBOARD
# ═══════════════════════════════════════════════════════════════════════════════

elif st.session_state["step"] == "dashboard":
    analysis: Optional[Dict[str, Any]] = st.session_state["analysis"]
    doc_type = st.session_state["doc_type"]

    col_h1, col_h2, col_h3, col_h4 = st.columns(4)
    col_h1.metric("Periods", len(st.session_state["periods"]))
    col_h2.metric("Document Type", document_type_label(doc_type) if doc_type else "Tabular data")
    col_h3.metric("Action Items", len(st.session_state["action_items"]))
    col_h4.metric("AI Requests", st.session_state["token_usage"]["requests"])

    st.markdown("---")

    if analysis is None:
        st.info("No analysis yet. Ask the AI assistant to analyze the document.", icon="🤖")
        _render_ai(None)
    else:
        tabs = st.tabs([
            "🏠 Overview", "📊 Ratios", "📈 Trends", "🛡️ Compliance & Risk",
            "🗂️ Structure", "✅ Action Items", "🤖 AI Assistant",
        ])
        with tabs[0]:
            _render_overview(analysis)
        with tabs[1]:
            _render_ratios(analysis)
        with tabs[2]:
            _render_trends(analysis)
        with tabs[3]:
            _render_compliance(analysis)
        with tabs[4]:
            _render_structure(analysis)
        with tabs[5]:
            _render_action_items()
        with tabs[6]:
            _render_ai(analysis)
