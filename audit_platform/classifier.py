"""
audit_platform/classifier.py
============================
Coarse single-label document classifier for extracted text.

Patterns are tried in order and the first hit wins: a 10-K carrying both an
audit opinion and financial statements is an audit report.
"""
from __future__ import annotations
import re
from typing import List, Tuple

from .types import DocumentType

_PATTERNS: List[Tuple[DocumentType, re.Pattern]] = [
    ("audit_report", re.compile(
        r"independent auditor[’']?s[’']? report|audit (?:opinion|report)",
        re.IGNORECASE,
    )),
    ("financial_statement", re.compile(
        r"balance sheet|statement of financial position|income statement"
        r"|statement of operations|cash flows",
        re.IGNORECASE,
    )),
    # whole words only: "first" and "scheduled" must not read as tax filings
    ("tax_filing", re.compile(
        r"form 10-[kq]|form 1120|form 1065|\birs\b|tax return|\bschedule\b",
        re.IGNORECASE,
    )),
]


def classify_document(text: str) -> DocumentType:
    """Label free text as audit_report / financial_statement / tax_filing / unknown."""
    if not text:
        return "unknown"
    for label, pattern in _PATTERNS:
        if pattern.search(text):
            return label
    return "unknown"
