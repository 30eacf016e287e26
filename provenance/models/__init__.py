from provenance.models.brand import Brand
from provenance.models.artifact import Artifact, ResaleProof, StolenTagRecord
from provenance.models.listing import Listing
from provenance.models.sale import Sale
from provenance.models.event import EventLogEntry

__all__ = [
    "Brand",
    "Artifact",
    "ResaleProof",
    "StolenTagRecord",
    "Listing",
    "Sale",
    "EventLogEntry",
]
