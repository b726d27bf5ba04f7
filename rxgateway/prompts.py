import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from .errors import ErrorKind, GatewayError
from .schemas import HistoryEntry, PrescriptionContext
from .uploads import UploadedDocument


logger = logging.getLogger(__name__)


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class ConversationMessage:
    role: Role
    text: str
    document: Optional[UploadedDocument] = None


@dataclass
class PromptContext:
    messages: List[ConversationMessage] = field(default_factory=list)

    @property
    def system(self) -> Optional[ConversationMessage]:
        if self.messages and self.messages[0].role is Role.SYSTEM:
            return self.messages[0]
        return None

    @property
    def turns(self) -> List[ConversationMessage]:
        """Everything after the system instruction."""
        return self.messages[1:] if self.system else list(self.messages)

    def __len__(self) -> int:
        return len(self.messages)


# ----------------------------
# Rendering
# ----------------------------

def render_prescription_context(ctx: PrescriptionContext) -> str:
    return (
        "Prescription Analysis Context:\n"
        f"File: {ctx.filename or 'unknown'}\n"
        f"Upload Date: {ctx.uploadDate or 'unknown'}\n"
        f"File Type: {ctx.fileType or 'unknown'}\n"
        "\n"
        "Analysis Results:\n"
        f"{ctx.analysis or ''}"
    )


def history_messages(
    history: Sequence[HistoryEntry],
    max_messages: Optional[int] = None,
) -> List[ConversationMessage]:
    out: List[ConversationMessage] = []
    for entry in history:
        text = entry.text.strip()
        if not text:
            continue
        role = Role.USER if entry.isUser else Role.ASSISTANT
        out.append(ConversationMessage(role, text))
    if max_messages is not None and max_messages >= 0 and len(out) > max_messages:
        out = out[len(out) - max_messages:]
    return out


# ----------------------------
# Assembly
# ----------------------------

def assemble_chat_prompt(
    system_prompt: Optional[str],
    message: Optional[str],
    prescription_context: Optional[PrescriptionContext] = None,
    history: Sequence[HistoryEntry] = (),
    document: Optional[UploadedDocument] = None,
    max_history_messages: Optional[int] = None,
) -> PromptContext:
    """
    Build the message list for one chat turn.

    Order: system instruction (only if non-blank), rendered prescription
    context, history mapped to user/assistant turns, then the current
    message. Raises EMPTY_INPUT when there is neither text nor a document.
    """
    text = (message or "").strip()
    if not text and document is None:
        raise GatewayError(ErrorKind.EMPTY_INPUT)

    messages: List[ConversationMessage] = []

    if system_prompt and system_prompt.strip():
        messages.append(ConversationMessage(Role.SYSTEM, system_prompt.strip()))

    if prescription_context is not None:
        messages.append(
            ConversationMessage(Role.USER, render_prescription_context(prescription_context))
        )

    messages.extend(history_messages(history, max_history_messages))
    messages.append(ConversationMessage(Role.USER, text, document=document))

    logger.debug(
        "Assembled chat prompt: %d messages (context=%s, history=%d)",
        len(messages), prescription_context is not None, len(history),
    )
    return PromptContext(messages)


def assemble_analysis_prompt(instruction: str, document: UploadedDocument) -> PromptContext:
    """A single user turn: the instruction plus the inlined document."""
    if document is None or not document.data:
        raise GatewayError(ErrorKind.EMPTY_INPUT, "No file provided")
    return PromptContext([ConversationMessage(Role.USER, instruction.strip(), document=document)])
