"""StoryShelf API layer: routes, schemas, and middleware."""

from src.api.middleware import (
    ErrorHandlingMiddleware,
    RequestLoggingMiddleware,
    configure_cors,
)
from src.api.routes import router
from src.api.schemas import (
    AnswerResponse,
    AskQuestionRequest,
    BookListResponse,
    BookStatusResponse,
    CharacterChatRequest,
    CharacterListResponse,
    ErrorResponse,
    HealthResponse,
    MediaUrlsResponse,
    ProcessAcceptedResponse,
)

__all__ = [
    "ErrorHandlingMiddleware",
    "RequestLoggingMiddleware",
    "configure_cors",
    "router",
    "AnswerResponse",
    "AskQuestionRequest",
    "BookListResponse",
    "BookStatusResponse",
    "CharacterChatRequest",
    "CharacterListResponse",
    "ErrorResponse",
    "HealthResponse",
    "MediaUrlsResponse",
    "ProcessAcceptedResponse",
]
