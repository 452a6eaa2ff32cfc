# Models
from models.conversation import (
    ConversationSource,
    Message,
    MessageRole,
    ParsedConversation,
)
from models.errors import (
    ExtractionFailure,
    IdentificationFailure,
    ParseFailure,
    PipelineError,
    StoreFailure,
)

__all__ = [
    "ConversationSource",
    "Message",
    "MessageRole",
    "ParsedConversation",
    "ExtractionFailure",
    "IdentificationFailure",
    "ParseFailure",
    "PipelineError",
    "StoreFailure",
]
