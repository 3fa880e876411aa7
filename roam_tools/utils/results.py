"""Result envelope returned by every routed tool call.

Mirrors the MCP ``CallToolResult`` shape closely enough that the server can
forward it as-is, while staying independent of any MCP library so the CLI can
consume it too.
"""

import json
from typing import Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .error_utils import RoamError


class TextContent(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["image"] = "image"
    data: str  # base64
    mime_type: str = Field(alias="mimeType")


Content = Union[TextContent, ImageContent]


class ToolResponse(BaseModel):
    """Content items plus an error flag for the caller's boundary."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    content: List[Content] = Field(default_factory=list)
    is_error: bool = False
    error: Optional[RoamError] = Field(default=None, exclude=True)

    @property
    def text(self) -> str:
        """All text items joined, for logging and tests."""
        return "\n".join(c.text for c in self.content if isinstance(c, TextContent))


def text_result(value: Any) -> ToolResponse:
    """Wrap a value as a single text item; non-strings become indented JSON."""
    text = value if isinstance(value, str) else json.dumps(value, indent=2)
    return ToolResponse(content=[TextContent(text=text)])


def image_result(data: str, mime_type: str) -> ToolResponse:
    return ToolResponse(content=[ImageContent(data=data, mime_type=mime_type)])


def error_result(error: RoamError) -> ToolResponse:
    return ToolResponse(
        content=[TextContent(text=error.message)],
        is_error=True,
        error=error,
    )
