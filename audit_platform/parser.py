"""
audit_platform/parser.py
========================
Row normalisation and upload ingestion. Handles:
  - CSV text / bytes (header row, one reporting period per row)
  - Excel (.xlsx, .xls) – first worksheet, header row
  - PDF – plain page text for the document classifier / agent
  - HTML and plain text documents

Rows are mapped onto PeriodDatum through an ordered alias table. Coercion
never raises: anything that does not parse as a number becomes absent.
"""
from __future__ import annotations
import io
import logging
import math
import re
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import fitz  # PyMuPDF
import httpx
import pandas as pd
from bs4 import BeautifulSoup

from .types import PERIOD_FIELDS, ParsedUpload, PeriodDatum

logger = logging.getLogger(__name__)


# ─── Field Aliases ────────────────────────────────────────────────────────────

PERIOD_LABEL_ALIASES: Tuple[str, ...] = ("period", "Period", "date", "Date")

FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    "revenue": ("revenue", "Revenue"),
    "cost_of_goods_sold": ("cogs", "COGS", "costOfGoodsSold"),
    "operating_expenses": ("opex", "OperatingExpenses"),
    "net_income": ("netIncome", "NetIncome"),
    "assets": ("assets", "Assets"),
    "liabilities": ("liabilities", "Liabilities"),
    "equity": ("equity", "Equity"),
    "interest_expense": ("interest", "InterestExpense"),
    "inventory": ("inventory", "Inventory"),
    "receivables": ("receivables", "Receivables"),
    "payables": ("payables", "Payables"),
    "cash_flow_from_operations": ("cfo", "CashFlowFromOperations"),
}

_NUMBER_RE = re.compile(r'^[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?$')
_SEPARATORS_RE = re.compile(r'[,\s]+')


# ─── Numeric Normalisation ────────────────────────────────────────────────────

def _is_present(val: Any) -> bool:
    if val is None:
        return False
    if isinstance(val, float) and math.isnan(val):
        return False
    return True


def to_numeric(val: Any) -> Optional[float]:
    """Strip thousands separators (commas, whitespace) and parse; failures → None."""
    if not _is_present(val) or isinstance(val, bool):
        return None
    if isinstance(val, (int, float)):
        try:
            num = float(val)
        except OverflowError:
            return None
        return num if math.isfinite(num) else None
    s = _SEPARATORS_RE.sub('', str(val))
    if not _NUMBER_RE.match(s):
        return None
    num = float(s)
    return num if math.isfinite(num) else None


def _lookup(row: Mapping[str, Any], aliases: Iterable[str]) -> Any:
    """First present value among the aliases; exact key match beats case-insensitive."""
    aliases = tuple(aliases)
    for alias in aliases:
        if alias in row and _is_present(row[alias]):
            return row[alias]
    lowered: Dict[str, Any] = {}
    for key, val in row.items():
        if _is_present(val):
            lowered.setdefault(str(key).strip().lower(), val)
    for alias in aliases:
        if alias.lower() in lowered:
            return lowered[alias.lower()]
    return None


def _label(val: Any) -> str:
    if not _is_present(val):
        return ""
    if isinstance(val, float) and val.is_integer():
        return str(int(val))
    return str(val).strip()


def normalize_row(row: Mapping[str, Any]) -> PeriodDatum:
    """Map one raw tabular row (any alias / casing) onto a PeriodDatum."""
    values: Dict[str, Any] = {"period_label": _label(_lookup(row, PERIOD_LABEL_ALIASES))}
    for attr, aliases in FIELD_ALIASES.items():
        values[attr] = to_numeric(_lookup(row, aliases))
    return PeriodDatum(**values)


def normalize_rows(rows: Iterable[Mapping[str, Any]]) -> List[PeriodDatum]:
    return [normalize_row(r) for r in rows]


def periods_to_frame(periods: List[PeriodDatum]) -> pd.DataFrame:
    """Tabular view of periods (wire column names), in period order."""
    columns = ["periodLabel"] + [key for _, key in PERIOD_FIELDS]
    return pd.DataFrame([p.to_dict() for p in periods], columns=columns)


# ─── Text Helpers ─────────────────────────────────────────────────────────────

def decode_text(content: bytes) -> str:
    """Decode bytes with fallbacks for legacy exports (utf-16/latin1/etc.)."""
    for enc in ("utf-8-sig", "utf-16", "latin1", "cp1252"):
        try:
            text = content.decode(enc)
            if text:
                return text
        except UnicodeDecodeError:
            continue
    return content.decode("utf-8", errors="replace")


def _looks_like_html(content: bytes) -> bool:
    """Heuristic detection for HTML payloads saved with .xls extension."""
    head = content[:4096]
    low = head.lower().replace(b"\x00", b"")
    return any(tok in low for tok in (b"<html", b"<table", b"<!doctype html", b"<tr", b"<td"))


def html_to_text(html: str) -> str:
    """Visible text of an HTML document, one line per block."""
    soup = BeautifulSoup(html, 'lxml')
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    lines = (' '.join(line.split()) for line in soup.get_text("\n").splitlines())
    return '\n'.join(line for line in lines if line)


def extract_pdf_text(file_bytes: bytes) -> str:
    """Concatenate the text layer of every page, one page per line block."""
    out: List[str] = []
    with fitz.open(stream=file_bytes, filetype="pdf") as doc:
        for page in doc:
            out.append(page.get_text("text"))
    return '\n'.join(out)


# ─── Tabular Parsers ──────────────────────────────────────────────────────────

def _frame_to_periods(df: pd.DataFrame) -> List[PeriodDatum]:
    df = df.dropna(axis=0, how="all")
    return normalize_rows(df.to_dict(orient="records"))


def parse_csv_text(text: str) -> List[PeriodDatum]:
    """Header-row CSV → periods. Unparseable input yields an empty list."""
    try:
        df = pd.read_csv(io.StringIO(text), dtype=str, skip_blank_lines=True)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as exc:
        logger.debug("CSV parse failed: %s", exc)
        return []
    return _frame_to_periods(df)


def parse_xlsx(file_bytes: bytes, filename: str = "upload.xlsx") -> List[PeriodDatum]:
    """First worksheet of a workbook → periods."""
    fn_lower = filename.lower()
    try:
        if fn_lower.endswith('.xls') and _looks_like_html(file_bytes):
            # HTML tables shipped with an .xls extension
            frames = pd.read_html(io.StringIO(decode_text(file_bytes)))
            return _frame_to_periods(frames[0]) if frames else []
        engine = 'xlrd' if fn_lower.endswith('.xls') else 'openpyxl'
        df = pd.read_excel(io.BytesIO(file_bytes), sheet_name=0, dtype=str, engine=engine)
    except Exception as exc:
        logger.warning("Workbook %s could not be read: %s", filename, exc)
        return []
    return _frame_to_periods(df)


# ─── Main Parse Entry Point ───────────────────────────────────────────────────

def parse_upload(file_bytes: bytes, filename: str) -> ParsedUpload:
    """
    Dispatch an uploaded file by extension.
    Tabular files produce periods; documents produce text for classification.
    """
    fn_lower = filename.lower()

    if fn_lower.endswith('.csv'):
        return ParsedUpload(kind="csv", periods=parse_csv_text(decode_text(file_bytes)))
    if fn_lower.endswith(('.xlsx', '.xls')):
        return ParsedUpload(kind="xlsx", periods=parse_xlsx(file_bytes, filename))
    if fn_lower.endswith('.pdf'):
        try:
            text = extract_pdf_text(file_bytes)
        except RuntimeError as exc:
            logger.warning("PDF %s could not be read: %s", filename, exc)
            text = ""
        return ParsedUpload(kind="pdf", text=text)
    if fn_lower.endswith(('.htm', '.html')):
        return ParsedUpload(kind="html", text=html_to_text(decode_text(file_bytes)))
    if fn_lower.endswith('.txt'):
        return ParsedUpload(kind="text", text=decode_text(file_bytes))

    logger.info("Unsupported upload type: %s", filename)
    return ParsedUpload(kind="unsupported")


# ─── Remote Documents ─────────────────────────────────────────────────────────

def fetch_document(url: str, timeout: float = 20.0) -> Tuple[bytes, str]:
    """
    GET a remote document. Returns (content, pseudo filename) where the
    filename's extension (.pdf / .html) tells parse_upload how to read it.
    Raises httpx.HTTPError on network failures and non-2xx responses.
    """
    resp = httpx.get(url, timeout=timeout, follow_redirects=True)
    resp.raise_for_status()
    content_type = resp.headers.get("content-type", "").lower()
    if "application/pdf" in content_type or url.lower().split("?")[0].endswith(".pdf"):
        return resp.content, "remote.pdf"
    if "text/plain" in content_type:
        return resp.content, "remote.txt"
    return resp.content, "remote.html"
