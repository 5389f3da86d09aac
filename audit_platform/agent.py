"""
audit_platform/agent.py
=======================
LLM agent client: builds prompts for uploads, documents and auditor policy
follow-ups, calls the OpenAI chat completions API, and decides whether a
reply may replace the current analysis.

Replies are untrusted text. A reply replaces the analysis only when it is a
JSON object carrying non-null executiveSummary, financialMetrics and
complianceAndRisk; everything else is ignored and the prior analysis stays.
"""
from __future__ import annotations
import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from openai import OpenAI, OpenAIError
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from . import config
from .types import AgentMessage, AgentResult, DocumentType, TokenUsage

logger = logging.getLogger(__name__)

ANALYSIS_SYSTEM_PROMPT = """You are a financial audit analyst.
When you are asked to analyze data or documents, reply with ONE JSON object (no prose) with these keys:
executiveSummary {purpose, reportingPeriod, keyHighlights {revenue, netIncome, assets, liabilities}, majorChanges[]},
financialMetrics {profitability {grossMargin, netMargin, returnOnEquity}, liquidity {currentRatio, quickRatio},
solvency {debtToEquity, interestCoverage}, efficiency {inventoryTurnover, receivablesTurnover}},
complianceAndRisk {missingOrInconsistent[], unusualTransactions[], lateFilingsOrDelays[], nonComplianceNotes[]},
trends {periods[]}, anomalies {notes[]}, auditHighlights {areasRequiringJudgment[], estimatesAndAssumptions[],
internalControlDisclosures[], auditorsOpinion}, aiSuggestions [{question, rationale}],
and optionally aiQuestions[], deeperInvestigations[], risks[], opportunities[].
All numeric values must be JSON numbers, never strings. Omit a ratio you cannot compute."""

DOCUMENT_SYSTEM_PROMPT = (
    "You are an assistant that extracts financial metrics and audit highlights from complex documents."
)
POLICY_SYSTEM_PROMPT = (
    "You are an assistant that refines prior analysis based on auditor policies/instructions. "
    "Update the JSON summary accordingly."
)


class AgentError(RuntimeError):
    """The LLM backend could not be reached or returned an error."""


# ─── Shape Guard ──────────────────────────────────────────────────────────────

class AnalysisEnvelope(BaseModel):
    """Minimal structural check for an LLM-produced analysis; other keys pass through."""
    model_config = ConfigDict(extra="allow")

    executiveSummary: Any
    financialMetrics: Any
    complianceAndRisk: Any

    @field_validator("executiveSummary", "financialMetrics", "complianceAndRisk")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        if value is None:
            raise ValueError("must not be null")
        return value


def _strip_code_fences(content: str) -> str:
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    if content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


def parse_analysis_candidate(text: Optional[str]) -> Optional[Dict[str, Any]]:
    """Parsed analysis dict when ``text`` passes the shape guard, else None."""
    if not text:
        return None
    try:
        payload = json.loads(_strip_code_fences(text))
        AnalysisEnvelope.model_validate(payload)
    except (ValueError, ValidationError) as exc:
        logger.debug("Agent reply rejected as analysis: %s", exc)
        return None
    return payload


def accept_analysis(current: Optional[Mapping[str, Any]],
                    texts: Sequence[str]) -> Tuple[Optional[Mapping[str, Any]], bool]:
    """
    Decide the analysis after an agent reply. Only the first message is
    considered. Returns (analysis, replaced).
    """
    candidate = parse_analysis_candidate(texts[0] if texts else None)
    if candidate is None:
        return current, False
    return candidate, True


# ─── Message Builders ─────────────────────────────────────────────────────────

def chunk_text(text: str, chunk_size: int = config.DOC_CHUNK_SIZE,
               max_chunks: int = config.MAX_DOC_CHUNKS) -> List[str]:
    limit = min(len(text), chunk_size * max_chunks)
    return [text[i:i + chunk_size] for i in range(0, limit, chunk_size)]


def build_upload_messages(kind: str, context: Mapping[str, Any],
                          periods: Optional[List[Dict[str, Any]]] = None) -> List[AgentMessage]:
    payload: Dict[str, Any] = {"context": dict(context)}
    if periods is not None:
        payload["periods"] = periods
    return [
        AgentMessage("user", f"Analyze financial {kind.upper()} just uploaded"),
        AgentMessage("context", json.dumps(payload)),
    ]


def build_document_messages(text: str, doc_type: DocumentType) -> List[AgentMessage]:
    messages = [
        AgentMessage("system", DOCUMENT_SYSTEM_PROMPT),
        AgentMessage("context", json.dumps({"docType": doc_type})),
    ]
    messages.extend(AgentMessage("user", chunk) for chunk in chunk_text(text))
    return messages


def build_policy_messages(state: Mapping[str, Any], policy: str) -> List[AgentMessage]:
    policy = (policy or "")[:config.MAX_POLICY_CHARS]
    context = json.dumps({"state": state, "policy": policy}, default=str)[:config.MAX_CONTEXT_CHARS]
    return [
        AgentMessage("system", POLICY_SYSTEM_PROMPT),
        AgentMessage("context", context),
        AgentMessage("user", policy or "Apply policy to refine the analysis."),
    ]


# ─── Agent Call ───────────────────────────────────────────────────────────────

def get_openai_client(api_key: Optional[str] = None) -> OpenAI:
    """Get OpenAI client instance."""
    api_key = api_key or config.OPENAI_API_KEY
    if not api_key:
        raise AgentError("OpenAI API key not found. Set OPENAI_API_KEY environment variable.")
    return OpenAI(api_key=api_key)


def _to_chat_messages(messages: Sequence[AgentMessage]) -> List[Dict[str, str]]:
    """Chat API roles; 'context' messages are passed as system context."""
    out = [{"role": "system", "content": ANALYSIS_SYSTEM_PROMPT}]
    for m in messages:
        if m.role == "context":
            out.append({"role": "system", "content": f"Context:\n{m.content}"})
        else:
            out.append({"role": m.role, "content": m.content})
    return out


def echo_response(messages: Sequence[AgentMessage]) -> AgentResult:
    """Offline reply used when no LLM backend is configured."""
    user_text = "\n".join(f"{m.role}: {m.content}" for m in messages)
    return AgentResult(new_messages=[
        AgentMessage("assistant", f"Agent received {len(messages)} messages."),
        AgentMessage("assistant", "Preview:\n" + user_text[:500]),
    ])


def run_agent(messages: Sequence[AgentMessage], client: Optional[OpenAI] = None) -> AgentResult:
    """
    Send the conversation to the LLM and return its reply with token usage.
    Without a client or API key the offline echo reply is returned.
    """
    if client is None:
        if not config.OPENAI_API_KEY:
            logger.info("No OPENAI_API_KEY configured; using offline echo agent")
            return echo_response(messages)
        client = get_openai_client()

    try:
        response = client.chat.completions.create(
            model=config.OPENAI_MODEL,
            messages=_to_chat_messages(messages),
            temperature=config.OPENAI_TEMPERATURE,
            max_tokens=config.OPENAI_MAX_TOKENS,
        )
    except OpenAIError as exc:
        logger.error("Agent call failed: %s", exc)
        raise AgentError(str(exc)) from exc

    content = response.choices[0].message.content or ""
    usage = TokenUsage()
    if response.usage is not None:
        usage = TokenUsage(
            prompt_tokens=response.usage.prompt_tokens or 0,
            completion_tokens=response.usage.completion_tokens or 0,
            total_tokens=response.usage.total_tokens or 0,
        )
    logger.info("Agent replied (%d tokens)", usage.total_tokens)
    return AgentResult(new_messages=[AgentMessage("assistant", content)], usage=usage)


def add_usage(token_usage: Mapping[str, Any], usage: TokenUsage) -> Dict[str, int]:
    """Accumulate one call's usage into the session's tokenUsage counters."""
    current = dict(token_usage or {})
    return {
        "promptTokens": int(current.get("promptTokens", 0)) + usage.prompt_tokens,
        "completionTokens": int(current.get("completionTokens", 0)) + usage.completion_tokens,
        "totalTokens": int(current.get("totalTokens", 0)) + usage.total_tokens,
        "requests": int(current.get("requests", 0)) + 1,
    }
