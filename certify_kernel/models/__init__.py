"""ORM models for the certify kernel."""

from certify_kernel.models.consumption import ConsumptionEvent, ConsumptionUnit
from certify_kernel.models.lot import Lot
from certify_kernel.models.organization import ManufacturerSettings, Organization
from certify_kernel.models.patient import Patient
from certify_kernel.models.product import Product
from certify_kernel.models.sequence import SequenceCounter
from certify_kernel.models.transfer import TransferEvent, TransferUnit
from certify_kernel.models.unit import Unit

__all__ = [
    "Organization",
    "ManufacturerSettings",
    "Product",
    "Lot",
    "Unit",
    "Patient",
    "TransferEvent",
    "TransferUnit",
    "ConsumptionEvent",
    "ConsumptionUnit",
    "SequenceCounter",
]
