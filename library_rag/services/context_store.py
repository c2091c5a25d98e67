"""Conversation and research-session state for the catalog assistant.

Three layers live here:

* ``ContextStore`` is the storage interface (get / put / delete / sweep) with
  per-entry locks, and ``InMemoryContextStore`` is the default backing map.
* ``ContextManager`` implements conversation semantics on top of two stores:
  bounded message windows, a ring-bounded search history, preferences and
  research sessions.
* ``ContextSweeper`` owns the periodic expiry task and its cancellation handle.

Every mutation of a conversation or session happens under that entry's lock,
so concurrent turns on different conversations never contend.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterable,
    List,
    Optional,
    TypeVar,
)

import structlog

from ..core import config
from ..core.exceptions import NotFoundError
from ..models.conversation import (
    Conversation,
    Message,
    MessageRole,
    ResearchSession,
    SearchHistoryEntry,
    SessionQuery,
    SessionResource,
    SessionStatus,
    new_id,
    utc_now,
)
from ..utils.json_utils import serialized_length

logger = structlog.get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]

RECENT_MESSAGES_IN_CONTEXT = 5
RECENT_SEARCHES_IN_CONTEXT = 3
TOP_RESULTS_PER_SEARCH = 3


class ContextStore(Generic[T]):
    """Interface for keyed context storage."""

    async def get(self, key: str) -> Optional[T]:  # pragma: no cover - interface
        raise NotImplementedError

    async def put(self, key: str, value: T) -> None:  # pragma: no cover - interface
        raise NotImplementedError

    async def delete(self, key: str) -> Optional[T]:  # pragma: no cover - interface
        raise NotImplementedError

    async def values(self) -> List[T]:  # pragma: no cover - interface
        raise NotImplementedError

    async def sweep(self, expired: Callable[[T], bool]) -> List[str]:  # pragma: no cover - interface
        raise NotImplementedError

    def lock(self, key: str) -> asyncio.Lock:  # pragma: no cover - interface
        raise NotImplementedError

    async def size(self) -> int:  # pragma: no cover - interface
        raise NotImplementedError


class InMemoryContextStore(ContextStore[T]):
    """Process-local map with one ``asyncio.Lock`` per entry.

    The registry lock is held only while inserting or removing keys; reads and
    per-entry mutation never take it.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, T] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._registry_lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[T]:
        return self._entries.get(key)

    async def put(self, key: str, value: T) -> None:
        async with self._registry_lock:
            self._entries[key] = value
            self._locks.setdefault(key, asyncio.Lock())

    async def delete(self, key: str) -> Optional[T]:
        async with self._registry_lock:
            self._locks.pop(key, None)
            return self._entries.pop(key, None)

    async def values(self) -> List[T]:
        return list(self._entries.values())

    async def sweep(self, expired: Callable[[T], bool]) -> List[str]:
        removed: List[str] = []
        for key, value in list(self._entries.items()):
            async with self.lock(key):
                if not expired(value):
                    continue
            async with self._registry_lock:
                if self._entries.get(key) is value:
                    del self._entries[key]
                    self._locks.pop(key, None)
                    removed.append(key)
        return removed

    def lock(self, key: str) -> asyncio.Lock:
        existing = self._locks.get(key)
        if existing is not None:
            return existing
        # Absent keys get a throwaway lock.
        if key not in self._entries:
            return asyncio.Lock()
        return self._locks.setdefault(key, asyncio.Lock())

    async def size(self) -> int:
        return len(self._entries)


def trim_messages(messages: Iterable[Message], budget: int) -> List[Message]:
    """Keep the newest messages whose serialized size fits *budget*.

    At least one message is always kept and relative order is preserved.
    """
    kept: List[Message] = []
    total = 0
    for message in reversed(list(messages)):
        size = serialized_length(message.to_dict())
        if kept and total + size > budget:
            break
        total += size
        kept.append(message)
    kept.reverse()
    return kept


class ContextManager:
    """Conversation memory and research sessions."""

    def __init__(
        self,
        conversations: Optional[ContextStore[Conversation]] = None,
        sessions: Optional[ContextStore[ResearchSession]] = None,
        *,
        context_window: Optional[int] = None,
        max_idle: Optional[timedelta] = None,
        archive_after: Optional[timedelta] = None,
        history_limit: Optional[int] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.conversations: ContextStore[Conversation] = conversations or InMemoryContextStore()
        self.sessions: ContextStore[ResearchSession] = sessions or InMemoryContextStore()
        self.context_window = context_window or config.CONTEXT_WINDOW
        self.max_idle = max_idle or timedelta(minutes=config.CONVERSATION_MAX_IDLE_MINUTES)
        self.archive_after = archive_after or timedelta(hours=config.RESEARCH_SESSION_ARCHIVE_HOURS)
        self.history_limit = history_limit or config.SEARCH_HISTORY_LIMIT
        self._clock = clock

    # ────────────────────────────────────────────────────────────
    #  Conversations
    # ────────────────────────────────────────────────────────────

    async def create_conversation(self, user_id: str = "anonymous") -> str:
        now = self._clock()
        conversation = Conversation(
            id=new_id(), user_id=user_id or "anonymous", created_at=now, last_activity=now
        )
        await self.conversations.put(conversation.id, conversation)
        logger.debug("conversation_created", conversation_id=conversation.id)
        return conversation.id

    async def get_conversation(self, conversation_id: Optional[str]) -> Optional[Conversation]:
        """Return the conversation and refresh its activity time, or None."""
        if not conversation_id:
            return None
        conversation = await self.conversations.get(conversation_id)
        if conversation is None:
            return None
        async with self.conversations.lock(conversation_id):
            conversation.last_activity = self._clock()
        return conversation

    async def require_conversation(self, conversation_id: str) -> Conversation:
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            raise NotFoundError("conversation", conversation_id)
        return conversation

    async def ensure_conversation(self, conversation_id: Optional[str], user_id: str = "anonymous") -> str:
        """Reuse a live conversation or start a new one."""
        if conversation_id and await self.get_conversation(conversation_id) is not None:
            return conversation_id
        return await self.create_conversation(user_id)

    async def add_message(self, conversation_id: str, text: str, role: Any = MessageRole.USER) -> str:
        conversation = await self.require_conversation(conversation_id)
        message = Message(role=MessageRole(role), content=text, timestamp=self._clock())
        async with self.conversations.lock(conversation_id):
            conversation.messages.append(message)
            conversation.last_activity = message.timestamp
            conversation.messages = trim_messages(conversation.messages, self.context_window)
        return message.id

    async def add_search_to_history(
        self,
        conversation_id: str,
        query: str,
        results: List[Any],
        insights: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record a search; unknown conversations are ignored."""
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            logger.debug("search_history_skipped", conversation_id=conversation_id)
            return
        entry = SearchHistoryEntry(
            query=query,
            result_count=len(results),
            top_results=[_summarize(r) for r in results[:TOP_RESULTS_PER_SEARCH]],
            ai_insights=insights,
            timestamp=self._clock(),
        )
        async with self.conversations.lock(conversation_id):
            conversation.search_history.append(entry)
            if len(conversation.search_history) > self.history_limit:
                conversation.search_history = conversation.search_history[-self.history_limit:]

    async def get_conversation_context(self, conversation_id: Optional[str]) -> Optional[str]:
        """Human-readable transcript of recent messages and searches."""
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            return None

        async with self.conversations.lock(conversation.id):
            messages = conversation.messages[-RECENT_MESSAGES_IN_CONTEXT:]
            searches = conversation.search_history[-RECENT_SEARCHES_IN_CONTEXT:]

        parts: List[str] = []
        if messages:
            parts.append("Recent Conversation:")
            parts.extend(f"{m.role.value}: {m.content}" for m in messages)
        if searches:
            parts.append("\nRecent Searches:")
            for search in searches:
                parts.append(f'Query: "{search.query}" ({search.result_count} results)')
                if search.top_results:
                    parts.append(f"Top result: {search.top_results[0].get('title')}")
        return "\n".join(parts)

    async def update_conversation_context(self, conversation_id: str, key: str, value: Any) -> None:
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            return
        async with self.conversations.lock(conversation_id):
            conversation.context[key] = value

    async def set_user_preferences(self, conversation_id: str, preferences: Dict[str, Any]) -> None:
        conversation = await self.get_conversation(conversation_id)
        if conversation is None or not preferences:
            return
        async with self.conversations.lock(conversation_id):
            conversation.preferences = {**conversation.preferences, **preferences}

    async def get_user_preferences(self, conversation_id: str) -> Dict[str, Any]:
        conversation = await self.get_conversation(conversation_id)
        return dict(conversation.preferences) if conversation else {}

    async def export_conversation(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            return None
        async with self.conversations.lock(conversation_id):
            data = conversation.to_dict()
        return {
            "id": data["id"],
            "createdAt": data["createdAt"],
            "messages": data["messages"],
            "searchHistory": data["searchHistory"],
            "context": data["context"],
        }

    # ────────────────────────────────────────────────────────────
    #  Research sessions
    # ────────────────────────────────────────────────────────────

    async def create_research_session(
        self, user_id: str, topic: str, requirements: Optional[Dict[str, Any]] = None
    ) -> str:
        now = self._clock()
        session = ResearchSession(
            id=new_id(),
            user_id=user_id,
            topic=topic,
            requirements=dict(requirements or {}),
            created_at=now,
            updated_at=now,
        )
        await self.sessions.put(session.id, session)
        return session.id

    async def get_research_session(self, session_id: str) -> Optional[ResearchSession]:
        return await self.sessions.get(session_id)

    async def add_resource_to_session(self, session_id: str, resource: Dict[str, Any]) -> Optional[str]:
        session = await self.sessions.get(session_id)
        if session is None:
            return None
        data = {k: v for k, v in resource.items() if k not in {"tags", "notes", "id"}}
        entry = SessionResource(
            data=data,
            tags=list(resource.get("tags") or []),
            notes=resource.get("notes") or "",
            added_at=self._clock(),
        )
        async with self.sessions.lock(session_id):
            session.resources.append(entry)
            session.updated_at = self._clock()
        return entry.id

    async def add_query_to_session(
        self, session_id: str, query: str, results: Optional[List[Any]] = None
    ) -> Optional[str]:
        session = await self.sessions.get(session_id)
        if session is None:
            return None
        entry = SessionQuery(query=query, result_count=len(results or []), timestamp=self._clock())
        async with self.sessions.lock(session_id):
            session.queries.append(entry)
            session.updated_at = self._clock()
        return entry.id

    async def update_session_notes(self, session_id: str, notes: str) -> None:
        session = await self.sessions.get(session_id)
        if session is None:
            return
        async with self.sessions.lock(session_id):
            session.notes = notes
            session.updated_at = self._clock()

    async def get_session_summary(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = await self.sessions.get(session_id)
        if session is None:
            return None
        return {
            "id": session.id,
            "topic": session.topic,
            "durationSeconds": (self._clock() - session.created_at).total_seconds(),
            "queryCount": len(session.queries),
            "resourceCount": len(session.resources),
            "lastActivity": session.updated_at.isoformat(),
            "status": session.status.value,
            "requirements": dict(session.requirements),
        }

    async def export_research_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = await self.sessions.get(session_id)
        if session is None:
            return None
        async with self.sessions.lock(session_id):
            data = session.to_dict()
        data["exportTimestamp"] = self._clock().isoformat()
        return data

    # ────────────────────────────────────────────────────────────
    #  Maintenance
    # ────────────────────────────────────────────────────────────

    async def sweep(self) -> Dict[str, int]:
        """Expire idle conversations and archive stale active sessions."""
        now = self._clock()
        removed = await self.conversations.sweep(
            lambda conv: now - conv.last_activity > self.max_idle
        )

        archived = 0
        for session in await self.sessions.values():
            async with self.sessions.lock(session.id):
                if session.status is SessionStatus.ACTIVE and now - session.updated_at > self.archive_after:
                    session.status = SessionStatus.ARCHIVED
                    archived += 1

        stats = {
            "expiredConversations": len(removed),
            "archivedSessions": archived,
            "activeConversations": await self.conversations.size(),
            "researchSessions": await self.sessions.size(),
        }
        logger.info("context_sweep_completed", **stats)
        return stats

    async def get_stats(self) -> Dict[str, int]:
        conversations = await self.conversations.values()
        return {
            "activeConversations": len(conversations),
            "researchSessions": await self.sessions.size(),
            "totalMessages": sum(len(c.messages) for c in conversations),
            "totalSearches": sum(len(c.search_history) for c in conversations),
        }


def _summarize(result: Any) -> Dict[str, Any]:
    if hasattr(result, "summary"):
        return result.summary()
    return {
        "id": result.get("id"),
        "title": result.get("title"),
        "author": result.get("author"),
        "year": result.get("year"),
    }


class ContextSweeper:
    """Runs ``ContextManager.sweep`` on a fixed interval until stopped."""

    def __init__(self, manager: ContextManager, interval: Optional[float] = None) -> None:
        self.manager = manager
        self.interval = config.CONTEXT_SWEEP_INTERVAL_SEC if interval is None else interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="context-sweeper")
        logger.info("context_sweeper_started", interval=self.interval)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("context_sweeper_stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.manager.sweep()
            except Exception as e:
                logger.error("context_sweep_failed", error=str(e), exc_info=True)
