"""
Conversation and research-session state held by the context store.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


@dataclass(frozen=True)
class Message:
    role: MessageRole
    content: str
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


@dataclass
class SearchHistoryEntry:
    query: str
    result_count: int
    top_results: List[Dict[str, Any]] = field(default_factory=list)
    ai_insights: Optional[Dict[str, Any]] = None
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "timestamp": self.timestamp.isoformat(),
            "resultCount": self.result_count,
            "topResults": list(self.top_results),
            "aiInsights": self.ai_insights,
        }


@dataclass
class Conversation:
    id: str
    user_id: str
    messages: List[Message] = field(default_factory=list)
    search_history: List[SearchHistoryEntry] = field(default_factory=list)
    preferences: Dict[str, Any] = field(default_factory=dict)
    context: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)
    last_activity: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "messages": [m.to_dict() for m in self.messages],
            "searchHistory": [s.to_dict() for s in self.search_history],
            "preferences": dict(self.preferences),
            "context": dict(self.context),
            "createdAt": self.created_at.isoformat(),
            "lastActivity": self.last_activity.isoformat(),
        }


@dataclass
class SessionResource:
    data: Dict[str, Any]
    tags: List[str] = field(default_factory=list)
    notes: str = ""
    id: str = field(default_factory=new_id)
    added_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.data,
            "id": self.id,
            "tags": list(self.tags),
            "notes": self.notes,
            "addedAt": self.added_at.isoformat(),
        }


@dataclass
class SessionQuery:
    query: str
    result_count: int
    effectiveness: Optional[float] = None
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "query": self.query,
            "timestamp": self.timestamp.isoformat(),
            "resultCount": self.result_count,
            "effectiveness": self.effectiveness,
        }


@dataclass
class ResearchSession:
    id: str
    user_id: str
    topic: str
    requirements: Dict[str, Any] = field(default_factory=dict)
    resources: List[SessionResource] = field(default_factory=list)
    queries: List[SessionQuery] = field(default_factory=list)
    notes: str = ""
    status: SessionStatus = SessionStatus.ACTIVE
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "userId": self.user_id,
            "topic": self.topic,
            "requirements": dict(self.requirements),
            "resources": [r.to_dict() for r in self.resources],
            "queries": [q.to_dict() for q in self.queries],
            "notes": self.notes,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
