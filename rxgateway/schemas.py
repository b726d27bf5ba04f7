from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, ValidationError

from .errors import ErrorKind, GatewayError


class PrescriptionContext(BaseModel):
    """Result of an earlier document analysis, echoed back by the client."""

    model_config = ConfigDict(extra="ignore")

    filename: Optional[StrictStr] = None
    analysis: Optional[StrictStr] = None
    uploadDate: Optional[StrictStr] = None
    fileType: Optional[StrictStr] = None


class HistoryEntry(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: Optional[Any] = None
    text: StrictStr
    isUser: StrictBool
    timestamp: Optional[Any] = None


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: Optional[Any] = None
    threadId: Optional[StrictStr] = None
    prescriptionContext: Optional[PrescriptionContext] = None
    conversationHistory: List[HistoryEntry] = Field(default_factory=list)

    def current_message(self) -> str:
        if not isinstance(self.message, str) or not self.message.strip():
            raise GatewayError(ErrorKind.EMPTY_INPUT)
        return self.message


def parse_chat_request(payload: Any) -> ChatRequest:
    """
    Validate a decoded JSON body. Shape problems are rejected, never coerced;
    a missing or blank message is reported as EMPTY_INPUT.
    """
    if not isinstance(payload, dict):
        raise GatewayError(ErrorKind.INVALID_PAYLOAD, "Request body must be a JSON object")

    history = payload.get("conversationHistory")
    if history is None:
        payload = {k: v for k, v in payload.items() if k != "conversationHistory"}

    try:
        request = ChatRequest.model_validate(payload)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in err["loc"]) for err in exc.errors()})
        raise GatewayError(
            ErrorKind.INVALID_PAYLOAD,
            f"Malformed chat request: {', '.join(fields)}",
        ) from None

    request.current_message()
    return request


def chat_result(result: str, thread_id: str) -> Dict[str, str]:
    return {"result": result, "threadId": thread_id}
