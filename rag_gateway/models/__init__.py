from .session import SessionState, SessionRecord
from .store import KnowledgeStore, DocumentRecord, TenantSettings
from .tool import ArgKind, ArgField, ToolDefinition, ToolResult

__all__ = [
    "SessionState",
    "SessionRecord",
    "KnowledgeStore",
    "DocumentRecord",
    "TenantSettings",
    "ArgKind",
    "ArgField",
    "ToolDefinition",
    "ToolResult",
]
