"""API endpoint registry for the integrations panel.

Create, update and delete are passed straight through to a collaborator that
owns endpoint storage. ``test`` and ``sync`` are awaited on the collaborator
while a per-endpoint busy flag blocks duplicate calls for the same id.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, replace
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Set
from urllib.parse import urlparse

import pandas as pd

from retail_core.filters import utc_now
from retail_core.models import HTTP_METHODS, APIEndpoint, EndpointDraft

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "url", "method", "headers", "enabled", "last_sync")

PRESET_ENDPOINTS: List[EndpointDraft] = [
    EndpointDraft(
        name="Shopify Products",
        url="https://your-shop.myshopify.com/admin/api/2023-01/products.json",
        method="GET",
        headers={"X-Shopify-Access-Token": "your-token"},
    ),
    EndpointDraft(
        name="WooCommerce Products",
        url="https://yoursite.com/wp-json/wc/v3/products",
        method="GET",
        headers={"Authorization": "Basic base64(consumer_key:consumer_secret)"},
    ),
    EndpointDraft(
        name="Square Inventory",
        url="https://connect.squareup.com/v2/inventory/counts/batch-retrieve",
        method="POST",
        headers={"Authorization": "Bearer your-access-token", "Content-Type": "application/json"},
    ),
]


class EndpointCollaborator(Protocol):
    def list(self) -> List[APIEndpoint]: ...

    def add(self, draft: EndpointDraft) -> None: ...

    def update(self, endpoint_id: str, fields: Mapping[str, object]) -> None: ...

    def delete(self, endpoint_id: str) -> None: ...

    async def test(self, endpoint_id: str) -> bool: ...

    async def sync(self, endpoint_id: str) -> None: ...


def draft_from_preset(name: str) -> EndpointDraft:
    for preset in PRESET_ENDPOINTS:
        if preset.name == name:
            return replace(preset, headers=dict(preset.headers), enabled=True)
    raise KeyError(name)


def with_header(headers: Mapping[str, str], key: str, value: str) -> Dict[str, str]:
    out = dict(headers)
    if key and value:
        out[key] = value
    return out


def without_header(headers: Mapping[str, str], key: str) -> Dict[str, str]:
    return {k: v for k, v in headers.items() if k != key}


class EndpointRegistry:
    def __init__(self, collaborator: EndpointCollaborator):
        self.collaborator = collaborator
        self._testing: Set[str] = set()
        self._syncing: Set[str] = set()

    def endpoints(self) -> List[APIEndpoint]:
        return self.collaborator.list()

    def get(self, endpoint_id: str) -> Optional[APIEndpoint]:
        for ep in self.endpoints():
            if ep.id == endpoint_id:
                return ep
        return None

    def save(self, draft: EndpointDraft, editing_id: Optional[str] = None) -> None:
        if editing_id is not None:
            self.collaborator.update(editing_id, asdict(draft))
        else:
            self.collaborator.add(draft)

    def delete(self, endpoint_id: str, confirm: Callable[[Optional[APIEndpoint]], bool]) -> bool:
        if not confirm(self.get(endpoint_id)):
            return False
        self.collaborator.delete(endpoint_id)
        return True

    def is_testing(self, endpoint_id: str) -> bool:
        return endpoint_id in self._testing

    def is_syncing(self, endpoint_id: str) -> bool:
        return endpoint_id in self._syncing

    async def test(self, endpoint_id: str) -> Optional[bool]:
        """Run the collaborator's connection test.

        Returns None when a test for this endpoint is already in flight,
        otherwise whether it succeeded. Collaborator errors count as failure.
        """
        if endpoint_id in self._testing:
            return None
        self._testing.add(endpoint_id)
        try:
            return bool(await self.collaborator.test(endpoint_id))
        except Exception:
            logger.exception("endpoint test failed: %s", endpoint_id)
            return False
        finally:
            self._testing.discard(endpoint_id)

    async def sync(self, endpoint_id: str) -> Optional[bool]:
        if endpoint_id in self._syncing:
            return None
        ep = self.get(endpoint_id)
        if ep is not None and not ep.enabled:
            return None
        self._syncing.add(endpoint_id)
        try:
            await self.collaborator.sync(endpoint_id)
            return True
        except Exception:
            logger.exception("endpoint sync failed: %s", endpoint_id)
            return False
        finally:
            self._syncing.discard(endpoint_id)


class InMemoryEndpointCollaborator:
    """Process-local endpoint store. Performs no network I/O."""

    def __init__(self, endpoints: Optional[List[APIEndpoint]] = None):
        self._endpoints: Dict[str, APIEndpoint] = {ep.id: ep for ep in endpoints or []}

    def _require(self, endpoint_id: str) -> APIEndpoint:
        if endpoint_id not in self._endpoints:
            raise KeyError(endpoint_id)
        return self._endpoints[endpoint_id]

    def list(self) -> List[APIEndpoint]:
        return list(self._endpoints.values())

    def add(self, draft: EndpointDraft) -> None:
        ep = APIEndpoint(id=uuid.uuid4().hex, **asdict(draft))
        self._endpoints[ep.id] = ep
        logger.info("endpoint added: %s (%s)", ep.id, ep.name)

    def update(self, endpoint_id: str, fields: Mapping[str, object]) -> None:
        ep = self._require(endpoint_id)
        changes = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS}
        if "method" in changes and changes["method"] not in HTTP_METHODS:
            raise ValueError(f"unsupported method: {changes['method']}")
        self._endpoints[endpoint_id] = replace(ep, **changes)  # type: ignore[arg-type]

    def delete(self, endpoint_id: str) -> None:
        self._require(endpoint_id)
        del self._endpoints[endpoint_id]
        logger.info("endpoint deleted: %s", endpoint_id)

    async def test(self, endpoint_id: str) -> bool:
        ep = self._require(endpoint_id)
        parsed = urlparse(ep.url)
        return ep.enabled and parsed.scheme in ("http", "https") and bool(parsed.netloc)

    async def sync(self, endpoint_id: str) -> None:
        ep = self._require(endpoint_id)
        self._endpoints[endpoint_id] = replace(ep, last_sync=utc_now().to_pydatetime())


def endpoints_frame(endpoints: List[APIEndpoint]) -> pd.DataFrame:
    cols = ["id", "name", "url", "method", "enabled", "last_sync"]
    if not endpoints:
        return pd.DataFrame(columns=cols)
    return pd.DataFrame([asdict(ep) for ep in endpoints])[cols]
