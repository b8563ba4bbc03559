"""
Marketplace product catalogue.

The Marketplace numbers products sequentially, so the catalogue is read by
walking products(0 .. nextProductId - 1). Slots whose merchant is the zero
address were never listed and are skipped.

Invariants:
    - Every listed product appears once, in id order
    - Reads are not pinned to one block; a product listed during the walk
      may be missing and shows up on the next read

How to change safely:
    - An unlisted slot has id 0 and a zero merchant; reads.read_chain_state
      keys off the id, the catalogue off the merchant, and both must agree
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from ..chain.abi import decode_bytes32
from ..chain.base import ChainClient
from ..model import normalize_address
from ..status import LifecycleStatus

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40


@dataclass(frozen=True)
class ProductSnapshot:
    """One listed product.

    Attributes:
        product_id: On-chain product id
        merchant: Listing merchant address
        category: Category decoded from its bytes32 id
        price: Unit price in base units
        stock: Stock counter as stored on chain
        active: Whether the product can be bought
        metadata: Free-form listing text
    """

    product_id: int
    merchant: str
    category: str
    price: int
    stock: int
    active: bool
    metadata: str

    @property
    def status(self) -> LifecycleStatus:
        return LifecycleStatus.ACTIVE if self.active else LifecycleStatus.FROZEN


class ProductCatalogReader:
    """Reads the Marketplace catalogue from a ChainClient.

    Example:
        >>> catalog = ProductCatalogReader(client)
        >>> [p.product_id for p in await catalog.list_products(merchant=shop)]
        [1, 4]
    """

    def __init__(self, client: ChainClient) -> None:
        self.client = client

    async def list_products(
        self, merchant: Optional[str] = None, active_only: bool = False
    ) -> List[ProductSnapshot]:
        """Listed products, optionally of one merchant or only active ones.

        Raises:
            RpcUnavailable: On connectivity loss
        """
        wanted = normalize_address(merchant) if merchant else None
        next_id = int((await self.client.call("Marketplace", "nextProductId")).value)

        products = []
        for product_id in range(next_id):
            record = (await self.client.call("Marketplace", "products", [product_id])).value
            owner = normalize_address(record["merchant"])
            if owner == ZERO_ADDRESS:
                continue
            if wanted is not None and owner != wanted:
                continue
            if active_only and not record["active"]:
                continue
            products.append(
                ProductSnapshot(
                    product_id=product_id,
                    merchant=owner,
                    category=decode_bytes32(record["categoryId"]),
                    price=int(record["price"]),
                    stock=int(record["stock"]),
                    active=bool(record["active"]),
                    metadata=record["metadata"],
                )
            )

        logger.debug(
            "Read product catalogue",
            extra={"next_product_id": next_id, "returned": len(products), "merchant": wanted},
        )
        return products
