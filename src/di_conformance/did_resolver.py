"""
Document loader for verification methods and controller documents.

Dereferences DID URLs and plain URLs to JSON documents:
- did:key is expanded locally into a Multikey DID Document
- did:web is fetched per https://w3c-ccg.github.io/did-method-web/
- http(s) URLs are fetched as JSON
- anything registered with ``add_document`` is served from memory
"""

from __future__ import annotations

import copy
import logging
from typing import Any
from urllib.parse import quote

import httpx

from di_conformance.multiformats import DecodeError, decode, strip_multicodec_prefix

logger = logging.getLogger(__name__)

DID_V1_CONTEXT = "https://www.w3.org/ns/did/v1"
MULTIKEY_V1_CONTEXT = "https://w3id.org/security/multikey/v1"

VERIFICATION_RELATIONSHIPS = (
    "authentication",
    "assertionMethod",
    "capabilityDelegation",
    "capabilityInvocation",
)


class ResolutionError(Exception):
    """Raised when a document cannot be dereferenced."""

    def __init__(self, message: str, transport: bool = False) -> None:
        super().__init__(message)
        self.transport = transport


def did_key_document(did: str) -> dict[str, Any]:
    """Expand a did:key identifier into its DID Document.

    Raises:
        ResolutionError: If the method-specific id is not a multikey.
    """
    if not did.startswith("did:key:"):
        raise ResolutionError(f"Invalid did:key identifier: {did}")

    multibase_key = did[len("did:key:"):]
    try:
        strip_multicodec_prefix(decode(multibase_key))
    except DecodeError as e:
        raise ResolutionError(f"Invalid did:key multikey in {did}: {e}") from e

    vm_id = f"{did}#{multibase_key}"
    document: dict[str, Any] = {
        "@context": [DID_V1_CONTEXT, MULTIKEY_V1_CONTEXT],
        "id": did,
        "verificationMethod": [
            {
                "id": vm_id,
                "type": "Multikey",
                "controller": did,
                "publicKeyMultibase": multibase_key,
            }
        ],
    }
    for relationship in VERIFICATION_RELATIONSHIPS:
        document[relationship] = [vm_id]
    return document


def did_web_url(did: str) -> str:
    """Convert a did:web identifier to its resolution URL.

    did:web:example.com -> https://example.com/.well-known/did.json
    did:web:example.com:path:to:doc -> https://example.com/path/to/doc/did.json
    did:web:example.com%3A8080 -> https://example.com:8080/.well-known/did.json

    Raises:
        ResolutionError: If the DID format is invalid.
    """
    if not did.startswith("did:web:"):
        raise ResolutionError(f"Invalid did:web identifier: {did}")

    domain_path = did[len("did:web:"):].split("#")[0]
    parts = domain_path.split(":")
    domain = parts[0].replace("%3A", ":")
    if not domain:
        raise ResolutionError(f"Invalid did:web identifier: {did}")

    if len(parts) > 1:
        path = "/" + "/".join(quote(p, safe="") for p in parts[1:]) + "/did.json"
    else:
        path = "/.well-known/did.json"

    return f"https://{domain}{path}"


def select_fragment(document: dict[str, Any], url: str) -> dict[str, Any]:
    """Pick the verification method named by ``url`` out of a DID Document.

    Raises:
        ResolutionError: If no verification method has that id.
    """
    base, _, fragment = url.partition("#")
    for vm in document.get("verificationMethod", []):
        if not isinstance(vm, dict):
            continue
        vm_id = vm.get("id", "")
        if vm_id == url or vm_id == f"#{fragment}":
            selected = copy.deepcopy(vm)
            selected["id"] = url
            selected.setdefault("controller", base)
            if "@context" in document:
                selected.setdefault("@context", document["@context"])
            return selected
    raise ResolutionError(f"Verification method {url} not found in {base}")


class DocumentLoader:
    """Async loader returning JSON documents for DIDs, DID URLs and URLs."""

    def __init__(
        self,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        documents: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        """Initialize the document loader.

        Args:
            timeout: HTTP request timeout in seconds.
            verify_ssl: Whether to verify SSL certificates.
            documents: Documents served without network access, keyed by URL.
        """
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._documents: dict[str, dict[str, Any]] = dict(documents or {})
        self._cache: dict[str, dict[str, Any]] = {}

    def add_document(self, url: str, document: dict[str, Any]) -> None:
        """Serve ``document`` for ``url`` from memory."""
        self._documents[url] = document

    async def __call__(self, url: str) -> dict[str, Any]:
        return await self.load(url)

    async def load(self, url: str, use_cache: bool = True) -> dict[str, Any]:
        """Dereference ``url`` to a JSON document.

        DID URLs with a fragment resolve to the matching verification method.
        The returned document is a copy and may be modified by the caller.

        Raises:
            ResolutionError: If the document cannot be obtained.
        """
        if not isinstance(url, str) or not url:
            raise ResolutionError(f"Cannot dereference {url!r}")

        if url in self._documents:
            return copy.deepcopy(self._documents[url])

        base = url.split("#")[0]
        if base in self._documents:
            document = self._documents[base]
        elif use_cache and base in self._cache:
            document = self._cache[base]
        else:
            document = await self._fetch(base)
            if use_cache:
                self._cache[base] = document

        if "#" in url and base.startswith("did:"):
            return select_fragment(document, url)
        return copy.deepcopy(document)

    async def _fetch(self, url: str) -> dict[str, Any]:
        if url.startswith("did:key:"):
            return did_key_document(url)
        if url.startswith("did:web:"):
            return await self._get_json(did_web_url(url), url)
        if url.startswith("https://") or url.startswith("http://"):
            return await self._get_json(url, url)
        raise ResolutionError(f"Unsupported identifier scheme: {url}")

    async def _get_json(self, location: str, url: str) -> dict[str, Any]:
        logger.debug("Fetching %s from %s", url, location)
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, verify=self.verify_ssl
            ) as client:
                response = await client.get(
                    location,
                    headers={
                        "Accept": "application/did+ld+json, application/ld+json, "
                        "application/json"
                    },
                )
                response.raise_for_status()
                data = response.json()

        except httpx.HTTPStatusError as e:
            raise ResolutionError(
                f"HTTP error resolving {url}: {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            raise ResolutionError(
                f"Network error resolving {url}: {e}", transport=True
            ) from e
        except ValueError as e:
            raise ResolutionError(f"Invalid JSON in document for {url}") from e

        if not isinstance(data, dict):
            raise ResolutionError(f"Document for {url} is not a JSON object")
        return data

    def clear_cache(self) -> None:
        """Clear the resolution cache."""
        self._cache.clear()
