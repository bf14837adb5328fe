from specloop.state.commits import CommitOutcome, CommitPolicy, CommitPolicyError
from specloop.state.document import DocumentStore, PlanDocument, Status, WorkItem
from specloop.state.telemetry import ActivityLog, SessionStats, SessionTelemetry

__all__ = [
    "ActivityLog",
    "CommitOutcome",
    "CommitPolicy",
    "CommitPolicyError",
    "DocumentStore",
    "PlanDocument",
    "SessionStats",
    "SessionTelemetry",
    "Status",
    "WorkItem",
]
