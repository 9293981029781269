"""
Request envelope: everything one view fetch needs, resolved up front.
"""

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Union

from .url_builder import UrlBuilder


TtlSpec = Union[int, str]


@dataclass(frozen=True)
class Envelope:
    """Immutable per-call request descriptor."""

    template: str
    id: str
    parameters: Mapping[str, str]
    query_parameters: Mapping[str, str]
    ttl: TtlSpec
    null_ttl: TtlSpec
    url: str

    @classmethod
    def build(
        cls,
        url_builder: UrlBuilder,
        template: str,
        id: str,
        parameters: Mapping[str, str],
        query_parameters: Mapping[str, str],
        timeout: int,
        ttl: TtlSpec,
        null_ttl: TtlSpec,
    ) -> "Envelope":
        """Resolve the URL; a positive timeout leads the query string."""
        query = dict(query_parameters)
        if timeout > 0:
            query = {"timeout": str(timeout), **query}

        params = dict(parameters)
        return cls(
            template=template,
            id=id,
            parameters=MappingProxyType(params),
            query_parameters=MappingProxyType(query),
            ttl=ttl,
            null_ttl=null_ttl,
            url=url_builder.build_url(template, params, query),
        )
