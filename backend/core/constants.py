"""Constants and enums for the workflow automation engine.

Enum values are the upper-case strings stored in workflow definitions
and execution rows, so they double as the wire format.
"""

from enum import Enum


class ExecutionStatus(str, Enum):
    """Workflow execution status."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    RETRYING = "RETRYING"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ExecutionStatus.SUCCESS,
            ExecutionStatus.FAILED,
            ExecutionStatus.CANCELLED,
        )


class ActionStatus(str, Enum):
    """Outcome of a single action."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class TriggeredBy(str, Enum):
    """Origin of an execution."""

    USER_ACTION = "USER_ACTION"
    SCHEDULE = "SCHEDULE"
    WEBHOOK = "WEBHOOK"
    EVENT = "EVENT"
    MANUAL = "MANUAL"
    TEST = "TEST"


class EntityType(str, Enum):
    """Domain objects an execution context can describe."""

    PROJECT = "project"
    TASK = "task"
    INVOICE = "invoice"
    CLIENT = "client"
    USER = "user"


class TriggerType(str, Enum):
    """Event types a workflow can declare as triggers."""

    # Project
    PROJECT_CREATED = "PROJECT_CREATED"
    PROJECT_STATUS_CHANGED = "PROJECT_STATUS_CHANGED"
    PROJECT_MILESTONE_REACHED = "PROJECT_MILESTONE_REACHED"
    PROJECT_BUDGET_THRESHOLD = "PROJECT_BUDGET_THRESHOLD"
    PROJECT_DEADLINE_APPROACHING = "PROJECT_DEADLINE_APPROACHING"

    # Task
    TASK_CREATED = "TASK_CREATED"
    TASK_ASSIGNED = "TASK_ASSIGNED"
    TASK_COMPLETED = "TASK_COMPLETED"
    TASK_OVERDUE = "TASK_OVERDUE"
    TASK_PRIORITY_CHANGED = "TASK_PRIORITY_CHANGED"
    TASK_STATUS_CHANGED = "TASK_STATUS_CHANGED"

    # Time
    SCHEDULE_DAILY = "SCHEDULE_DAILY"
    SCHEDULE_WEEKLY = "SCHEDULE_WEEKLY"
    SCHEDULE_MONTHLY = "SCHEDULE_MONTHLY"
    SCHEDULE_CUSTOM = "SCHEDULE_CUSTOM"
    SPECIFIC_DATE = "SPECIFIC_DATE"
    RELATIVE_DATE = "RELATIVE_DATE"

    # Financial
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_SENT = "INVOICE_SENT"
    INVOICE_PAID = "INVOICE_PAID"
    INVOICE_OVERDUE = "INVOICE_OVERDUE"
    PAYMENT_RECEIVED = "PAYMENT_RECEIVED"
    BUDGET_ALERT = "BUDGET_ALERT"

    # Client
    CLIENT_CREATED = "CLIENT_CREATED"
    CLIENT_UPDATED = "CLIENT_UPDATED"

    # Team
    TEAM_MEMBER_ADDED = "TEAM_MEMBER_ADDED"
    TEAM_MEMBER_REMOVED = "TEAM_MEMBER_REMOVED"

    # Custom
    WEBHOOK = "WEBHOOK"
    MANUAL = "MANUAL"


SCHEDULE_TRIGGER_TYPES = frozenset({
    TriggerType.SCHEDULE_DAILY,
    TriggerType.SCHEDULE_WEEKLY,
    TriggerType.SCHEDULE_MONTHLY,
    TriggerType.SCHEDULE_CUSTOM,
    TriggerType.SPECIFIC_DATE,
    TriggerType.RELATIVE_DATE,
})


class ActionType(str, Enum):
    """Side-effecting operations a workflow can run."""

    # Notification
    SEND_EMAIL = "SEND_EMAIL"
    SEND_CHAT_MESSAGE = "SEND_CHAT_MESSAGE"
    SEND_SMS = "SEND_SMS"
    CREATE_NOTIFICATION = "CREATE_NOTIFICATION"

    # Project
    CREATE_TASK = "CREATE_TASK"
    UPDATE_PROJECT_STATUS = "UPDATE_PROJECT_STATUS"
    UPDATE_PROJECT_FIELD = "UPDATE_PROJECT_FIELD"

    # Task
    UPDATE_TASK_STATUS = "UPDATE_TASK_STATUS"
    UPDATE_TASK_PRIORITY = "UPDATE_TASK_PRIORITY"
    ASSIGN_TASK = "ASSIGN_TASK"
    ADD_TASK_COMMENT = "ADD_TASK_COMMENT"

    # Custom / flow control
    WEBHOOK = "WEBHOOK"
    DELAY = "DELAY"


class ConditionOperator(str, Enum):
    """Operators usable in a condition leaf."""

    # Comparison
    EQUALS = "EQUALS"
    NOT_EQUALS = "NOT_EQUALS"
    GREATER_THAN = "GREATER_THAN"
    LESS_THAN = "LESS_THAN"
    GREATER_OR_EQUAL = "GREATER_OR_EQUAL"
    LESS_OR_EQUAL = "LESS_OR_EQUAL"

    # String
    CONTAINS = "CONTAINS"
    NOT_CONTAINS = "NOT_CONTAINS"
    STARTS_WITH = "STARTS_WITH"
    ENDS_WITH = "ENDS_WITH"
    MATCHES_REGEX = "MATCHES_REGEX"

    # Set
    IN = "IN"
    NOT_IN = "NOT_IN"

    # Boolean / null
    IS_TRUE = "IS_TRUE"
    IS_FALSE = "IS_FALSE"
    IS_NULL = "IS_NULL"
    IS_NOT_NULL = "IS_NOT_NULL"

    # Date
    BEFORE = "BEFORE"
    AFTER = "AFTER"
    BETWEEN = "BETWEEN"


UNARY_OPERATORS = frozenset({
    ConditionOperator.IS_TRUE,
    ConditionOperator.IS_FALSE,
    ConditionOperator.IS_NULL,
    ConditionOperator.IS_NOT_NULL,
})


class LogicalOperator(str, Enum):
    """Operators combining condition groups."""

    AND = "AND"
    OR = "OR"
    NOT = "NOT"


class LogLevel(str, Enum):
    """Level of a WorkflowLog audit row."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class NotificationType(str, Enum):
    """In-app notification flavour."""

    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
