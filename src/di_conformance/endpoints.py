"""
Issuer and verifier endpoints of the implementations under test.

An endpoint is a VC API service reached with ``POST`` and a JSON body. Its
response is reduced to ``EndpointResponse(data, result, error)``: ``data`` is
the decoded JSON body, ``result`` the HTTP result on success and ``error``
the failure (HTTP status or transport problem).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

import httpx

logger = logging.getLogger(__name__)


class CapabilitySet:
    """Immutable set of capability tags."""

    __slots__ = ("_tags",)

    def __init__(self, tags: Iterable[str] = ()) -> None:
        self._tags = frozenset(tags)

    def is_superset_of(self, other: CapabilitySet | Iterable[str]) -> bool:
        """Whether every tag of ``other`` is also in this set."""
        required = other._tags if isinstance(other, CapabilitySet) else frozenset(other)
        return self._tags >= required

    def missing(self, other: CapabilitySet | Iterable[str]) -> list[str]:
        """Tags of ``other`` absent from this set, sorted."""
        required = other._tags if isinstance(other, CapabilitySet) else frozenset(other)
        return sorted(required - self._tags)

    def __contains__(self, tag: object) -> bool:
        return tag in self._tags

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._tags))

    def __len__(self) -> int:
        return len(self._tags)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CapabilitySet):
            return self._tags == other._tags
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._tags)

    def __repr__(self) -> str:
        return f"CapabilitySet({sorted(self._tags)!r})"


@dataclass
class HttpResult:
    """A successful HTTP exchange."""

    status: int
    body: Any = None


@dataclass
class EndpointError:
    """A failed HTTP exchange.

    ``status`` is None when the request never got a response.
    """

    message: str
    status: int | None = None
    data: Any = None
    transport: bool = False


@dataclass
class EndpointResponse:
    """Outcome of ``Endpoint.post``."""

    data: Any = None
    result: HttpResult | None = None
    error: EndpointError | None = None


@dataclass
class EndpointSettings:
    """Static configuration of an endpoint."""

    endpoint: str
    id: str | None = None
    options: dict[str, Any] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)
    tags: CapabilitySet = field(default_factory=CapabilitySet)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EndpointSettings:
        """Create settings from a configuration entry."""
        return cls(
            endpoint=data["endpoint"],
            id=data.get("id"),
            options=dict(data.get("options") or {}),
            headers=dict(data.get("headers") or {}),
            tags=CapabilitySet(data.get("tags") or ()),
        )


class Endpoint:
    """A VC API issuer or verifier endpoint."""

    def __init__(
        self,
        settings: EndpointSettings,
        role: str,
        implementation: str = "",
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ) -> None:
        """Initialize the endpoint.

        Args:
            settings: Endpoint URL, issuer id, options and tags.
            role: ``issuer`` or ``verifier``.
            implementation: Name of the owning implementation.
            timeout: HTTP request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
        """
        self.settings = settings
        self.role = role
        self.implementation = implementation
        self.timeout = timeout
        self.verify_ssl = verify_ssl

    @property
    def tags(self) -> CapabilitySet:
        return self.settings.tags

    def __repr__(self) -> str:
        return f"Endpoint({self.role} {self.settings.endpoint!r})"

    async def post(self, json: dict[str, Any]) -> EndpointResponse:
        """POST ``json`` to the endpoint.

        Never raises for HTTP or transport failures; they are reported in
        ``EndpointResponse.error``.
        """
        headers = {"Accept": "application/json", **self.settings.headers}
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, verify=self.verify_ssl
            ) as client:
                response = await client.post(
                    self.settings.endpoint, json=json, headers=headers
                )
        except httpx.RequestError as e:
            logger.warning("Request to %s failed: %s", self.settings.endpoint, e)
            return EndpointResponse(
                error=EndpointError(
                    message=f"Network error: {e}", transport=True
                )
            )

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = response.text

        if response.is_error:
            return EndpointResponse(
                data=data,
                error=EndpointError(
                    message=f"HTTP {response.status_code} from {self.settings.endpoint}",
                    status=response.status_code,
                    data=data,
                ),
            )

        return EndpointResponse(
            data=data,
            result=HttpResult(status=response.status_code, body=data),
        )


@dataclass
class Implementation:
    """A named implementation with its issuer and verifier endpoints."""

    name: str
    issuers: list[Endpoint] = field(default_factory=list)
    verifiers: list[Endpoint] = field(default_factory=list)
    tags: CapabilitySet = field(default_factory=CapabilitySet)

    def endpoints(self, role: str) -> list[Endpoint]:
        """Endpoints with the given role."""
        if role in ("issuer", "issuers"):
            return self.issuers
        if role in ("verifier", "verifiers"):
            return self.verifiers
        raise ValueError(f"Unknown endpoint role: {role}")

    def find_verifier(self, tags: Iterable[str]) -> Endpoint | None:
        """First verifier whose tags include all of ``tags``."""
        for verifier in self.verifiers:
            if verifier.tags.is_superset_of(tags):
                return verifier
        return None

    @classmethod
    def from_dict(
        cls,
        data: dict[str, Any],
        timeout: float = 30.0,
        verify_ssl: bool = True,
    ) -> Implementation:
        """Create an implementation from a configuration entry."""
        name = data["name"]

        def build(role: str, entries: list[dict[str, Any]]) -> list[Endpoint]:
            return [
                Endpoint(
                    EndpointSettings.from_dict(entry),
                    role=role,
                    implementation=name,
                    timeout=timeout,
                    verify_ssl=verify_ssl,
                )
                for entry in entries or []
            ]

        return cls(
            name=name,
            issuers=build("issuer", data.get("issuers", [])),
            verifiers=build("verifier", data.get("verifiers", [])),
            tags=CapabilitySet(data.get("tags") or ()),
        )


@dataclass
class Match:
    """Endpoints of one implementation that satisfy a tag filter."""

    endpoints: list[Endpoint]
    implementation: Implementation


class ImplementationRegistry:
    """Ordered collection of implementations under test."""

    def __init__(self, implementations: Iterable[Implementation] = ()) -> None:
        self._implementations: dict[str, Implementation] = {}
        for implementation in implementations:
            self.add(implementation)

    def add(self, implementation: Implementation) -> None:
        """Register an implementation; names must be unique."""
        if implementation.name in self._implementations:
            raise ValueError(f"Duplicate implementation: {implementation.name}")
        self._implementations[implementation.name] = implementation

    def get(self, name: str) -> Implementation | None:
        return self._implementations.get(name)

    def __iter__(self) -> Iterator[Implementation]:
        return iter(self._implementations.values())

    def __len__(self) -> int:
        return len(self._implementations)

    def filter_by_tag(
        self, tags: Iterable[str], role: str = "issuers"
    ) -> tuple[dict[str, Match], dict[str, Match]]:
        """Split implementations on whether they have matching endpoints.

        Args:
            tags: Tags an endpoint must all carry.
            role: ``issuers`` or ``verifiers``.

        Returns:
            ``(match, non_match)``, each an ordered mapping of implementation
            name to ``Match``. Registration order is preserved.
        """
        required = CapabilitySet(tags)
        match: dict[str, Match] = {}
        non_match: dict[str, Match] = {}
        for implementation in self:
            endpoints = implementation.endpoints(role)
            matching = [e for e in endpoints if e.tags.is_superset_of(required)]
            if matching:
                match[implementation.name] = Match(matching, implementation)
            else:
                non_match[implementation.name] = Match(endpoints, implementation)
        return match, non_match
