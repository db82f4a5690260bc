"""
Pydantic models for contentflow API requests and responses.
This module defines the request and response schemas used by the contentflow API.
"""

from typing import (
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
)

from contentflow.core.schema import Message


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class ChatRequest(BaseModel):
    """A conversation to continue with one named agent."""

    model_config = ConfigDict(populate_by_name=True)

    messages: List[Message] = Field(..., min_length=1, description="Conversation history")
    user_id: Optional[str] = Field(None, alias="userId", description="Caller identity for traces")
    agent: str = Field("router", description="Name of the agent to run")


class OrchestrateRequest(BaseModel):
    """A request to run through the content pipeline."""

    model_config = ConfigDict(populate_by_name=True)

    message: str = Field(..., min_length=1, description="User request for the pipeline")
    user_id: Optional[str] = Field(None, alias="userId", description="Caller identity for traces")


class AgentInfo(BaseModel):
    """Public description of a configured agent."""

    name: str
    model: str
    tools: List[str]
    max_steps: int
