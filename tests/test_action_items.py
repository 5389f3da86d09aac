"""
tests/test_action_items.py
==========================
Derivation, dedup and merge of action items, plus manual edits.
"""
import itertools

import pytest

from audit_platform.action_items import (
    add_action_item,
    derive_action_items,
    items_to_dicts,
    merge_action_items,
    new_action_item,
    remove_action_item,
    update_action_item,
)
from audit_platform.analyzer import build_analysis
from audit_platform.types import ActionItem, PeriodDatum


@pytest.fixture
def id_factory():
    counter = itertools.count(1)
    return lambda: f"item-{next(counter)}"


@pytest.fixture
def llm_analysis():
    """Analysis dict shaped like an accepted LLM reply."""
    return {
        "executiveSummary": {},
        "financialMetrics": {},
        "complianceAndRisk": {
            "missingOrInconsistent": ["Missing revenue in latest period"],
            "unusualTransactions": ["Related-party loan of $2M"],
            "lateFilingsOrDelays": ["Q3 filing 10 days late"],
            "nonComplianceNotes": ["ASC 842 lease disclosure missing"],
        },
        "anomalies": {"notes": ["Revenue spike in Q4"]},
        "aiSuggestions": [{"question": "Why did margins fall?", "rationale": "Trend"}],
        "risks": ["Customer concentration"],
        "opportunities": ["Refinance debt"],
    }


class TestDeriveActionItems:
    def test_prefixes_and_priorities(self, llm_analysis, id_factory):
        items = derive_action_items(llm_analysis, [], id_factory)
        assert [(i.title, i.priority) for i in items] == [
            ("Resolve: Missing revenue in latest period", "High"),
            ("Investigate unusual transaction: Related-party loan of $2M", "High"),
            ("Address non-compliance: ASC 842 lease disclosure missing", "High"),
            ("Investigate anomaly: Revenue spike in Q4", "High"),
            ("Follow up: Why did margins fall?", "Medium"),
            ("Mitigate risk: Customer concentration", "High"),
            ("Explore opportunity: Refinance debt", "Low"),
        ]
        assert all(i.owner == "Auditor" and not i.completed for i in items)
        assert [i.id for i in items][:2] == ["item-1", "item-2"]

    def test_late_filings_not_derived(self, llm_analysis, id_factory):
        titles = [i.title for i in derive_action_items(llm_analysis, [], id_factory)]
        assert not any("10 days late" in t for t in titles)

    def test_existing_title_is_not_duplicated(self, llm_analysis, id_factory):
        existing = [ActionItem(id="x", title="  resolve: MISSING revenue in latest period ")]
        titles = [i.title for i in derive_action_items(llm_analysis, existing, id_factory)]
        assert "Resolve: Missing revenue in latest period" not in titles

    def test_duplicates_within_one_pass(self, id_factory):
        analysis = {"complianceAndRisk": {"missingOrInconsistent": ["Gap", "gap ", "Gap"]}}
        items = derive_action_items(analysis, [], id_factory)
        assert [i.title for i in items] == ["Resolve: Gap"]

    def test_malformed_entries_skipped(self, id_factory):
        analysis = {
            "anomalies": {"notes": [None, "", {"x": 1}, ["nested"], "Real note"]},
            "aiSuggestions": ["Plain string question", {"rationale": "no question"}],
            "risks": "not a list",
        }
        titles = [i.title for i in derive_action_items(analysis, [], id_factory)]
        assert titles == ["Investigate anomaly: Real note", "Follow up: Plain string question"]

    def test_accepts_dataclass_analysis(self, id_factory):
        analysis = build_analysis([PeriodDatum(period_label="Q1", revenue=10.0)])
        titles = [i.title for i in derive_action_items(analysis, [], id_factory)]
        assert "Resolve: Missing netIncome in latest period" in titles

    def test_empty_analysis(self, id_factory):
        assert derive_action_items({}, [], id_factory) == []
        assert derive_action_items(None, [], id_factory) == []


class TestMergeActionItems:
    def test_idempotent(self, llm_analysis, id_factory):
        first = merge_action_items(llm_analysis, [], id_factory)
        second = merge_action_items(llm_analysis, first, id_factory)
        assert second == first

    def test_existing_items_kept_first_and_untouched(self, llm_analysis, id_factory):
        existing = [{"id": "m1", "title": "Call CFO", "owner": "Jane", "priority": "Low", "completed": True}]
        merged = merge_action_items(llm_analysis, existing, id_factory)
        assert merged[0] == ActionItem(id="m1", title="Call CFO", owner="Jane", priority="Low", completed=True)
        assert len(merged) == 8

    def test_completed_item_suppresses_rederivation(self, llm_analysis, id_factory):
        first = items_to_dicts(merge_action_items(llm_analysis, [], id_factory))
        first[0]["completed"] = True
        second = merge_action_items(llm_analysis, first, id_factory)
        assert len(second) == len(first)
        assert second[0].completed is True


class TestManualEdits:
    def test_new_item_defaults(self):
        item = new_action_item()
        assert item.title == "New action item"
        assert item.priority == "Medium"
        assert item.owner == "Auditor"
        assert item.id

    def test_add(self):
        items = add_action_item([], new_action_item("Review leases", "High"))
        assert [(i.title, i.priority) for i in items] == [("Review leases", "High")]

    def test_update_is_partial_and_keeps_id(self):
        items = [ActionItem(id="a", title="One"), ActionItem(id="b", title="Two")]
        out = update_action_item(items, "b", {"completed": True, "id": "hijack", "owner": "Sam"})
        assert out[1] == ActionItem(id="b", title="Two", owner="Sam", priority="Medium", completed=True)
        assert out[0] == items[0]

    def test_update_invalid_priority_falls_back(self):
        out = update_action_item([ActionItem(id="a", title="One", priority="High")], "a", {"priority": "Urgent"})
        assert out[0].priority == "Medium"

    def test_update_unknown_id_is_noop(self):
        items = [ActionItem(id="a", title="One")]
        assert update_action_item(items, "zzz", {"title": "X"}) == items

    def test_remove(self):
        items = [ActionItem(id="a", title="One"), ActionItem(id="b", title="Two")]
        assert [i.id for i in remove_action_item(items, "a")] == ["b"]

    def test_wire_shape(self):
        assert items_to_dicts([ActionItem(id="a", title="One")]) == [
            {"id": "a", "title": "One", "owner": "Auditor", "priority": "Medium", "completed": False},
        ]
