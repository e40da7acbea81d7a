"""
Verification method and controller document resolution.

Wraps a document loader and turns the documents it returns into typed
objects the assertion rules work with.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from di_conformance.did_resolver import DocumentLoader, ResolutionError
from di_conformance.multiformats import decode, strip_multicodec_prefix

logger = logging.getLogger(__name__)

Loader = Callable[[str], Awaitable[dict[str, Any]]]


@dataclass
class VerificationMethodDocument:
    """A dereferenced verification method."""

    id: str
    type: str | None
    controller: str | None
    public_key_multibase: Any = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, url: str, data: dict[str, Any]) -> VerificationMethodDocument:
        """Create from a loaded JSON document."""
        return cls(
            id=data.get("id", url),
            type=data.get("type"),
            controller=data.get("controller"),
            public_key_multibase=data.get("publicKeyMultibase"),
            raw=data,
        )

    def public_key_bytes(self) -> bytes:
        """Raw key material with the multicodec prefix removed.

        Raises:
            DecodeError: If ``publicKeyMultibase`` is not a valid multikey.
        """
        _, key = strip_multicodec_prefix(decode(self.public_key_multibase))
        return key


@dataclass
class ControllerDocument:
    """The document named by a verification method's ``controller``."""

    id: str
    raw: dict[str, Any] = field(default_factory=dict)

    def declares(self, relationship: str | None) -> bool:
        """Whether the document has a property named ``relationship``."""
        return isinstance(relationship, str) and relationship in self.raw


class VerificationMethodResolver:
    """Resolves verification methods and their controllers."""

    def __init__(self, loader: Loader | None = None) -> None:
        """Initialize the resolver.

        Args:
            loader: Coroutine function mapping a URL to a document. A
                ``DocumentLoader`` is created if not provided.
        """
        self.loader = loader or DocumentLoader()

    async def _load(self, url: Any) -> dict[str, Any]:
        if not isinstance(url, str) or not url:
            raise ResolutionError(f"Cannot dereference {url!r}")
        try:
            document = await self.loader(url)
        except ResolutionError:
            raise
        except Exception as e:
            raise ResolutionError(f"Document loader failed for {url}: {e}") from e
        if not isinstance(document, dict):
            raise ResolutionError(f"Document for {url} is not a JSON object")
        return document

    async def resolve(self, verification_method: str) -> VerificationMethodDocument:
        """Dereference a verification method id.

        Raises:
            ResolutionError: If loading fails or the document has no
                ``type`` or ``controller``.
        """
        data = await self._load(verification_method)
        document = VerificationMethodDocument.from_dict(verification_method, data)
        if not document.type:
            raise ResolutionError(
                f"Verification method {verification_method} has no type"
            )
        if not document.controller:
            raise ResolutionError(
                f"Verification method {verification_method} has no controller"
            )
        return document

    async def resolve_controller(
        self, document: VerificationMethodDocument
    ) -> ControllerDocument:
        """Follow a verification method's ``controller`` one hop.

        Raises:
            ResolutionError: If the controller cannot be loaded.
        """
        data = await self._load(document.controller)
        return ControllerDocument(id=data.get("id", document.controller), raw=data)

    async def public_key_bytes(self, verification_method: str) -> bytes:
        """Resolve a verification method and return its raw key bytes.

        Raises:
            ResolutionError: If resolution fails.
            DecodeError: If the key is not a valid multikey.
        """
        document = await self.resolve(verification_method)
        return document.public_key_bytes()

    async def resolve_methods(
        self, proofs: list[dict[str, Any]]
    ) -> list[VerificationMethodDocument]:
        """Resolve the verification method of each proof, in order.

        Raises:
            ResolutionError: On the first method that cannot be resolved.
        """
        methods: list[VerificationMethodDocument] = []
        for proof in proofs:
            vm_id = proof.get("verificationMethod") if isinstance(proof, dict) else None
            methods.append(await self.resolve(vm_id))
        logger.debug("Resolved %d verification methods", len(methods))
        return methods

    async def resolve_controllers(
        self, methods: list[VerificationMethodDocument]
    ) -> list[ControllerDocument]:
        """Resolve the controller of each already resolved method, in order.

        Raises:
            ResolutionError: On the first controller that cannot be resolved.
        """
        controllers: list[ControllerDocument] = []
        for method in methods:
            controllers.append(await self.resolve_controller(method))
        return controllers

    async def resolve_proofs(
        self, proofs: list[dict[str, Any]]
    ) -> tuple[list[VerificationMethodDocument], list[ControllerDocument]]:
        """Resolve verification methods, then their controllers."""
        methods = await self.resolve_methods(proofs)
        return methods, await self.resolve_controllers(methods)
