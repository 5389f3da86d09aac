"""
tests/conftest.py
=================
Shared pytest fixtures for the Auditor Analyzer test suite.
"""
import sys
import os

# Ensure the project root is on the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from audit_platform.types import PeriodDatum


@pytest.fixture
def two_periods():
    """Two quarters with every ratio input populated."""
    return [
        PeriodDatum(
            period_label="Q1", revenue=1000.0, cost_of_goods_sold=550.0, net_income=90.0,
            assets=760.0, liabilities=400.0, equity=480.0, interest_expense=18.0,
            inventory=90.0, receivables=180.0,
        ),
        PeriodDatum(
            period_label="Q2", revenue=1100.0, cost_of_goods_sold=660.0, net_income=110.0,
            assets=800.0, liabilities=400.0, equity=500.0, interest_expense=22.0,
            inventory=110.0, receivables=220.0,
        ),
    ]
