"""Supplier integration registry."""

from typing import Optional

from videoshop.errors import UnknownSupplierError
from videoshop.suppliers.amazon import AmazonClient
from videoshop.suppliers.base import SupplierClient
from videoshop.suppliers.cj import CJDropshippingClient

SUPPLIER_CLASSES: dict[str, type[SupplierClient]] = {
    CJDropshippingClient.name: CJDropshippingClient,
    AmazonClient.name: AmazonClient,
}


class SupplierRegistry:
    """
    Owns one client (and therefore one state object) per supplier platform.

    The matcher and the fulfillment engine share a registry so the token
    cache and cooldown timer of a platform exist exactly once per process.
    """

    def __init__(self, clients: Optional[dict[str, SupplierClient]] = None):
        self._clients: dict[str, SupplierClient] = dict(clients or {})

    def get(self, platform: str) -> SupplierClient:
        client = self._clients.get(platform)
        if client is None:
            cls = SUPPLIER_CLASSES.get(platform)
            if cls is None:
                raise UnknownSupplierError(
                    f"Unknown supplier platform: {platform}", supplier=platform
                )
            client = cls()
            self._clients[platform] = client
        return client

    def register(self, client: SupplierClient):
        self._clients[client.name] = client

    def enabled(self, names: list[str]) -> list[SupplierClient]:
        return [self.get(name) for name in names]

    def health(self) -> dict[str, dict]:
        return {name: client.health() for name, client in self._clients.items()}

    async def close(self):
        for client in self._clients.values():
            await client.close()


def get_supplier(platform: str) -> SupplierClient:
    """Look up the process-wide client for a platform."""
    return supplier_registry.get(platform)


supplier_registry = SupplierRegistry()
