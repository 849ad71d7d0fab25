from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ExecutePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(alias="agentId", min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)


class CitationModel(BaseModel):
    uri: str
    title: str = ""


class ExecuteResult(BaseModel):
    data: Any
    citations: list[CitationModel] = Field(default_factory=list)


class HistoryEntryPayload(BaseModel):
    # Role is checked by the turn-state parser so unknown roles map to a 400.
    role: str
    text: str = ""


class ChatContextPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_name: str = Field(default="", alias="productName")
    persona: str = ""
    role: str = "prospect"


class StreamPayload(BaseModel):
    history: list[HistoryEntryPayload] = Field(default_factory=list)
    context: ChatContextPayload = Field(default_factory=ChatContextPayload)


class AgentSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(alias="agentId")
    description: str = ""
    stages: int
    model_class: str = Field(alias="modelClass")
