from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional


class ChatRequest(BaseModel):
    # extra OpenAI parameters (top_p, stop, ...) are forwarded untouched
    model_config = ConfigDict(extra="allow")

    model: Optional[str] = Field(default=None, description="model alias")
    # messages are opaque: forwarded exactly as received
    messages: List[Dict[str, Any]]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    stream: Optional[bool] = None


class ChatCompletion(BaseModel):
    id: str
    object: Literal["chat.completion"] = "chat.completion"
    created: int
    model: Optional[str] = None
    choices: Any = None
    usage: Any = None


class ModelCard(BaseModel):
    id: str
    object: Literal["model"] = "model"
    created: int
    owned_by: str


class ModelList(BaseModel):
    object: Literal["list"] = "list"
    data: List[ModelCard]


class HealthResponse(BaseModel):
    status: str
    service: str
    models: List[str]


class ErrorDetail(BaseModel):
    message: str
    type: Optional[str] = None
    code: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail

    def to_content(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)
