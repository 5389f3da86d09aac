"""Auditor Analyzer — financial-document analysis with AI-assisted follow-up."""
from .types import *
from .formatting import *
from .analyzer import build_analysis, compute_anomalies, compute_financial_metrics
from .classifier import classify_document
from .parser import normalize_row, parse_upload
from .action_items import derive_action_items, merge_action_items
