# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
#
# DESIGN DECISION: `message` is optional at the schema level. A missing or
# empty message is a client error with a fixed body
# ({"error": "Message is required"}, HTTP 400) rather than FastAPI's
# generic 422 validation payload, so the check lives in ChatService.
#
# DESIGN DECISION: `history` accepts arbitrary items. Malformed turns are
# dropped silently by prompts.filter_history() instead of rejecting the
# whole request; chat widgets commonly send extra roles (system, tool).
# =============================================================================

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ChatRequest(BaseModel):
    """
    Request body for POST /chat and POST /chat/stream.

    Example:
        {
            "message": "How many B are needed for 3 A?",
            "history": [
                {"role": "user", "content": "What is A?"},
                {"role": "assistant", "content": "A is ..."}
            ]
        }
    """

    message: str | None = Field(
        default=None,
        description="The user's question",
        examples=["How many B are needed for 3 A?"],
    )

    history: list[Any] | None = Field(
        default=None,
        description=(
            "Prior turns as {role, content} objects. Only 'user' and "
            "'assistant' turns with string content are forwarded."
        ),
    )

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "message": "How many B are needed for 3 A?",
                    "history": [{"role": "user", "content": "What is A?"}],
                }
            ]
        }
    )
