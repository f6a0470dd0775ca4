"""
Built-in workflow templates.

Ready-made definitions for common automations. ``instantiate_template``
returns a fresh definition dict (camelCase, as stored on a workflow row)
that callers customise and save.
"""

import copy
from typing import Any, Optional

from core.exceptions import NotFoundError

BUILTIN_TEMPLATES = [
    # ═══════════════════════════════════════════════════════════════════
    # PROJECT MANAGEMENT
    # ═══════════════════════════════════════════════════════════════════
    {
        "id": "project-completed-client-email",
        "name": "Project Completed Client Email",
        "description": "Email the client when a large project is marked completed.",
        "category": "project_management",
        "icon": "Briefcase",
        "tags": ["project", "client", "email"],
        "difficulty": "beginner",
        "definition": {
            "triggers": [
                {"type": "PROJECT_STATUS_CHANGED", "config": {"status": ["COMPLETED"]}},
            ],
            "conditions": {
                "operator": "AND",
                "conditions": [
                    {"field": "entity.data.budget", "operator": "GREATER_THAN", "value": 50000},
                ],
            },
            "actions": [
                {
                    "type": "SEND_EMAIL",
                    "order": 1,
                    "config": {
                        "to": "{{entity.data.clientEmail}}",
                        "subject": "Your project {{entity.data.name}} is complete",
                        "body": (
                            "Hello,\n\nWe're happy to let you know that {{entity.data.name}} "
                            "has been completed.\n\nThank you for working with us."
                        ),
                    },
                    "retryOnError": True,
                    "retry": {"preset": "email"},
                },
            ],
            "priority": 5,
            "maxRetries": 3,
            "retryDelaySeconds": 60,
        },
    },
    {
        "id": "project-budget-threshold-alert",
        "name": "Budget Threshold Alert",
        "description": "Warn the project manager when 80% of a project's budget is used.",
        "category": "project_management",
        "icon": "AlertCircle",
        "tags": ["project", "budget", "alert"],
        "difficulty": "intermediate",
        "definition": {
            "triggers": [
                {"type": "PROJECT_BUDGET_THRESHOLD", "config": {"budgetThreshold": 80}},
            ],
            "conditions": None,
            "actions": [
                {
                    "type": "CREATE_NOTIFICATION",
                    "order": 1,
                    "config": {
                        "userId": "{{entity.data.projectManagerId}}",
                        "title": "Budget alert: {{entity.data.name}}",
                        "message": "{{entity.data.budgetUsed}} of {{entity.data.budget}} used",
                        "type": "WARNING",
                    },
                    "continueOnError": True,
                },
                {
                    "type": "SEND_CHAT_MESSAGE",
                    "order": 2,
                    "config": {
                        "channel": "#projects",
                        "message": "Budget alert: {{entity.data.name}} has used {{entity.data.budgetUsed}} of {{entity.data.budget}}",
                    },
                },
            ],
            "priority": 7,
            "maxRetries": 3,
            "retryDelaySeconds": 60,
        },
    },
    # ═══════════════════════════════════════════════════════════════════
    # TASK MANAGEMENT
    # ═══════════════════════════════════════════════════════════════════
    {
        "id": "task-overdue-reminder",
        "name": "Overdue Task Reminder",
        "description": "Remind the assignee and comment on the task once it is overdue.",
        "category": "task_management",
        "icon": "AlertTriangle",
        "tags": ["task", "overdue", "reminder"],
        "difficulty": "beginner",
        "definition": {
            "triggers": [
                {"type": "TASK_OVERDUE", "config": {}},
            ],
            "conditions": {
                "operator": "AND",
                "conditions": [
                    {"field": "entity.data.assigneeId", "operator": "IS_NOT_NULL"},
                ],
            },
            "actions": [
                {
                    "type": "CREATE_NOTIFICATION",
                    "order": 1,
                    "config": {
                        "userId": "{{entity.data.assigneeId}}",
                        "title": "Task overdue: {{entity.data.title}}",
                        "message": "{{entity.data.title}} was due {{entity.data.dueDate}}",
                        "type": "WARNING",
                    },
                    "continueOnError": True,
                },
                {
                    "type": "ADD_TASK_COMMENT",
                    "order": 2,
                    "config": {
                        "taskId": "{{entity.id}}",
                        "comment": "Reminder: this task is past its due date.",
                    },
                },
            ],
            "priority": 6,
            "maxRetries": 2,
            "retryDelaySeconds": 120,
        },
    },
    # ═══════════════════════════════════════════════════════════════════
    # INVOICES
    # ═══════════════════════════════════════════════════════════════════
    {
        "id": "invoice-paid-thank-you",
        "name": "Payment Received Thank-You",
        "description": "Thank the client when an invoice is paid.",
        "category": "invoice_payment",
        "icon": "DollarSign",
        "tags": ["invoice", "payment", "client"],
        "difficulty": "beginner",
        "definition": {
            "triggers": [
                {"type": "INVOICE_PAID", "config": {}},
            ],
            "conditions": None,
            "actions": [
                {
                    "type": "SEND_EMAIL",
                    "order": 1,
                    "config": {
                        "to": "{{entity.data.clientEmail}}",
                        "subject": "Payment received - Invoice #{{entity.data.invoiceNumber}}",
                        "body": (
                            "Dear {{entity.data.clientName}},\n\nThank you! We've received "
                            "your payment of {{entity.data.amount}} for invoice "
                            "#{{entity.data.invoiceNumber}}.\n\nWe appreciate your business!"
                        ),
                    },
                },
            ],
            "priority": 5,
            "maxRetries": 3,
            "retryDelaySeconds": 60,
        },
    },
    # ═══════════════════════════════════════════════════════════════════
    # SCHEDULED
    # ═══════════════════════════════════════════════════════════════════
    {
        "id": "daily-digest",
        "name": "Daily Digest",
        "description": "Post a morning digest to the team chat every weekday at 09:00.",
        "category": "team_collaboration",
        "icon": "Calendar",
        "tags": ["schedule", "digest", "chat"],
        "difficulty": "beginner",
        "definition": {
            "triggers": [
                {"type": "SCHEDULE_DAILY", "config": {"schedule": "0 9 * * 1-5"}},
            ],
            "conditions": None,
            "actions": [
                {
                    "type": "SEND_CHAT_MESSAGE",
                    "order": 1,
                    "config": {
                        "channel": "#general",
                        "message": "Good morning! Daily digest for {{timestamp}}.",
                    },
                },
            ],
            "priority": 3,
            "maxRetries": 1,
            "retryDelaySeconds": 300,
        },
    },
]


def _summary(template: dict) -> dict:
    return {
        "id": template["id"],
        "name": template["name"],
        "description": template["description"],
        "category": template["category"],
        "icon": template["icon"],
        "tags": template["tags"],
        "difficulty": template["difficulty"],
        "trigger_types": [t["type"] for t in template["definition"]["triggers"]],
        "action_count": len(template["definition"]["actions"]),
    }


def list_templates(
    category: Optional[str] = None,
    difficulty: Optional[str] = None,
    search: Optional[str] = None,
) -> list[dict]:
    """Template summaries, optionally filtered."""
    templates = BUILTIN_TEMPLATES
    if category:
        templates = [t for t in templates if t["category"] == category]
    if difficulty:
        templates = [t for t in templates if t["difficulty"] == difficulty]
    if search:
        q = search.lower()
        templates = [
            t for t in templates
            if q in t["name"].lower()
            or q in t["description"].lower()
            or any(q in tag for tag in t["tags"])
        ]
    return [_summary(t) for t in templates]


def list_categories() -> list[str]:
    return sorted({t["category"] for t in BUILTIN_TEMPLATES})


def get_template(template_id: str) -> dict:
    """Full template, definition included. Raises NotFoundError."""
    for template in BUILTIN_TEMPLATES:
        if template["id"] == template_id:
            return copy.deepcopy(template)
    raise NotFoundError(f"Template not found: {template_id}")


def instantiate_template(template_id: str, overrides: Optional[dict[str, Any]] = None) -> dict:
    """A workflow definition built from a template, ready to save."""
    template = get_template(template_id)
    definition = {
        "name": template["name"],
        "description": template["description"],
        "category": template["category"],
        "tags": list(template["tags"]),
        "enabled": True,
        **template["definition"],
    }
    definition.update(overrides or {})
    return definition
