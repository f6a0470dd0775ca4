"""Tests for the built-in workflow templates."""

import pytest

from core.exceptions import NotFoundError
from workflow.templates import (
    BUILTIN_TEMPLATES,
    get_template,
    instantiate_template,
    list_categories,
    list_templates,
)
from workflow.validation import validate_workflow


@pytest.mark.unit
class TestTemplates:
    @pytest.mark.parametrize("template_id", [t["id"] for t in BUILTIN_TEMPLATES])
    def test_every_template_is_a_valid_workflow(self, template_id):
        result = validate_workflow(instantiate_template(template_id))
        assert result.errors == []
        assert result.warnings == []

    def test_ids_are_unique(self):
        ids = [t["id"] for t in BUILTIN_TEMPLATES]
        assert len(ids) == len(set(ids))

    def test_list_summaries(self):
        summaries = list_templates()
        assert len(summaries) == len(BUILTIN_TEMPLATES)
        assert "definition" not in summaries[0]
        assert summaries[0]["action_count"] >= 1

    def test_filters(self):
        assert {t["id"] for t in list_templates(category="task_management")} == {"task-overdue-reminder"}
        assert [t["id"] for t in list_templates(search="digest")] == ["daily-digest"]
        assert list_templates(difficulty="expert") == []

    def test_categories_sorted(self):
        categories = list_categories()
        assert categories == sorted(categories)
        assert "project_management" in categories

    def test_get_returns_a_copy(self):
        template = get_template("daily-digest")
        template["definition"]["actions"].clear()
        assert get_template("daily-digest")["definition"]["actions"]

    def test_get_unknown(self):
        with pytest.raises(NotFoundError):
            get_template("missing")

    def test_instantiate_applies_overrides(self):
        workflow = instantiate_template("invoice-paid-thank-you", {"name": "Thanks", "enabled": False})
        assert workflow["name"] == "Thanks"
        assert workflow["enabled"] is False
        assert workflow["triggers"] == [{"type": "INVOICE_PAID", "config": {}}]
