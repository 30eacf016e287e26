from datetime import datetime

from pydantic import BaseModel

from provenance.models.listing import Currency
from provenance.models.sale import Sale, SaleStatus


class SaleView(BaseModel):
    """Sale without seller/buyer addresses or their hashes."""

    id: str
    sale_id: str
    on_chain_sale_id: str
    listing_id: str
    tag_hash: str
    tag_commitment: str
    price: int
    currency: Currency
    status: SaleStatus
    has_buyer: bool = False
    create_sale_tx_id: str
    buy_sale_tx_id: str | None = None
    complete_sale_tx_id: str | None = None
    cancel_tx_id: str | None = None
    refund_tx_id: str | None = None
    created_at: datetime
    paid_at: datetime | None = None
    completed_at: datetime | None = None
    updated_at: datetime

    @classmethod
    def from_sale(cls, sale: Sale) -> "SaleView":
        data = sale.model_dump(exclude={"seller_address", "seller_hash", "buyer_address", "buyer_hash"})
        return cls.model_validate({**data, "has_buyer": sale.buyer_hash is not None})


class SaleSummary(SaleView):
    title: str = "Unknown Item"


class OnChainSaleState(BaseModel):
    active: bool = False
    paid: bool = False


class SaleStatusView(SaleView):
    on_chain: OnChainSaleState = OnChainSaleState()


class OnChainIdUpdate(BaseModel):
    updated: bool
    message: str
