from services.attribution_service import AttributionOutcome, AttributionResult, attribute
from services.errors import AuthorizationError, FetchFailure, NotificationFailure, PersistenceFailure
from services.join_service import JoinOutcome, MemberJoinPipeline
from services.ledger_service import InviteLedger, build_ledger_entry
from services.snapshot_service import InviteSnapshot, InviteSnapshotStore

__all__ = [
    "AttributionOutcome",
    "AttributionResult",
    "AuthorizationError",
    "FetchFailure",
    "InviteLedger",
    "InviteSnapshot",
    "InviteSnapshotStore",
    "JoinOutcome",
    "MemberJoinPipeline",
    "NotificationFailure",
    "PersistenceFailure",
    "attribute",
    "build_ledger_entry",
]
