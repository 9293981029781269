"""
Rendered view fragments returned by the Morph API.
"""

import json
from typing import Any, Dict, List, Union

from pydantic import BaseModel, ConfigDict, Field

from shared.errors import MorphDecodeError


# Written into bodies by the upstream template system; replaced with the caller's id.
ID_PLACEHOLDER = "{{MORPH_ID}}"


class MorphView(BaseModel):
    """Head, body and footer markup for one rendered view."""

    model_config = ConfigDict(frozen=True)

    head: Union[List[Any], Dict[str, Any]] = Field(default_factory=list)
    body: str = ""
    footer: Union[List[Any], Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_document(cls, id: str, document: Dict[str, Any]) -> "MorphView":
        """Build a view from a decoded response document.

        Missing or null fields fall back to empty containers; the id
        placeholder in ``bodyInline`` is substituted here and nowhere else.
        """
        head = document.get("head")
        if not isinstance(head, (list, dict)):
            head = []

        body = document.get("bodyInline")
        if not isinstance(body, str):
            body = ""

        footer = document.get("bodyLast")
        if not isinstance(footer, list):
            footer = []

        return cls(head=head, body=body.replace(ID_PLACEHOLDER, id), footer=footer)

    @classmethod
    def decode(cls, id: str, content: bytes) -> "MorphView":
        """Parse a raw response body."""
        try:
            document = json.loads(content)
        except (TypeError, ValueError) as e:
            raise MorphDecodeError("Response body is not valid JSON", details={"error": str(e)})

        if not isinstance(document, dict):
            raise MorphDecodeError(
                "Response body is not a JSON object",
                details={"type": type(document).__name__}
            )

        return cls.from_document(id, document)
