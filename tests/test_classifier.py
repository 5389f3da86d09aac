"""
tests/test_classifier.py
========================
Document classifier: first matching pattern wins, case-insensitive.
"""
import pytest

from audit_platform.classifier import classify_document


class TestClassifyDocument:
    def test_audit_report(self):
        assert classify_document("INDEPENDENT AUDITOR'S REPORT to the shareholders") == "audit_report"

    def test_audit_report_curly_apostrophe(self):
        assert classify_document("Independent Auditor’s Report") == "audit_report"

    def test_audit_opinion(self):
        assert classify_document("Basis for audit opinion") == "audit_report"

    def test_financial_statement(self):
        assert classify_document("Consolidated Statement of Cash Flows") == "financial_statement"

    def test_tax_filing(self):
        assert classify_document("Annual report on Form 10-K") == "tax_filing"

    @pytest.mark.parametrize("text", [
        "Form 1120 U.S. Corporation Income Tax",
        "Filed with the IRS",
        "Schedule C (Form 1040)",
        "Amended tax return",
        "Quarterly report, Form 10-Q",
    ])
    def test_tax_variants(self, text):
        assert classify_document(text) == "tax_filing"

    def test_order_of_precedence(self):
        text = "Form 10-K ... Balance Sheet ... Report of Independent Auditors; audit report attached"
        assert classify_document(text) == "audit_report"
        assert classify_document("Form 10-K including the balance sheet") == "financial_statement"

    def test_unknown(self):
        assert classify_document("Minutes of the board meeting") == "unknown"

    def test_empty(self):
        assert classify_document("") == "unknown"

    def test_irs_is_a_whole_word(self):
        assert classify_document("first quarter scheduled review") == "unknown"
