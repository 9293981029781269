"""
Canonical view URLs for the Morph API.
"""

from typing import Mapping
from urllib.parse import quote, unquote, urlencode

from shared.errors import ValidationError


class UrlBuilder:
    """Builds ``{endpoint}/view/{template}/{key}/{value}...?{query}`` URLs.

    The template is percent-decoded so prebuilt path segments (for example
    ``bbc-morph-foo%2Fbar``) survive, while parameter values are
    percent-encoded because they come from callers.
    """

    def __init__(self, endpoint: str):
        if not endpoint or not endpoint.strip():
            raise ValidationError("Morph endpoint must not be empty")
        self.endpoint = endpoint.rstrip('/')

    def build_url(
        self,
        template: str,
        parameters: Mapping[str, str],
        query_parameters: Mapping[str, str],
    ) -> str:
        if not template:
            raise ValidationError("Template name must not be empty")

        url = f"{self.endpoint}/view/{unquote(template)}"
        for key, value in parameters.items():
            url += f"/{key}/{quote(str(value), safe='')}"

        if query_parameters:
            url += "?" + urlencode([(key, str(value)) for key, value in query_parameters.items()])

        return url
