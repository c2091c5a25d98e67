"""
Request models for the HTTP surface
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class SearchRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Emptiness is checked by the orchestrator so it surfaces as a 400; null
    # optional fields fall back to the orchestrator defaults.
    query: Optional[str] = None
    context: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    preferences: Optional[Dict[str, Any]] = None
    user_id: Optional[str] = Field(default=None, alias="userId")
    sort_by: Optional[str] = Field(default=None, alias="sortBy")


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    user_id: Optional[str] = Field(default=None, alias="userId")
