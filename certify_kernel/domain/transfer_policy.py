"""
TransferPolicy -- which organization types may ship to which.

Responsibility:
    An injectable allowed-pairs table consulted by TransferEngine.  The
    default table is loaded from configuration; callers may build their own.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - An organization never ships to itself.
    - A pair absent from the table is forbidden.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from uuid import UUID

from certify_kernel.domain.enums import OrganizationType
from certify_kernel.exceptions import TransferNotAllowedError

DEFAULT_ALLOWED_PAIRS: Mapping[OrganizationType, frozenset[OrganizationType]] = (
    MappingProxyType(
        {
            OrganizationType.MANUFACTURER: frozenset(
                {OrganizationType.DISTRIBUTOR, OrganizationType.HOSPITAL}
            ),
            OrganizationType.DISTRIBUTOR: frozenset(
                {OrganizationType.DISTRIBUTOR, OrganizationType.HOSPITAL}
            ),
        }
    )
)


@dataclass(frozen=True)
class TransferPolicy:
    """
    Allowed (source type, destination type) pairs.

    Contract:
        ``check`` raises TransferNotAllowedError for a forbidden transfer and
        returns None otherwise.

    Non-goals:
        Does not check organization status; TransferEngine does that.
    """

    allowed: Mapping[OrganizationType, frozenset[OrganizationType]] = field(
        default_factory=lambda: DEFAULT_ALLOWED_PAIRS
    )

    @classmethod
    def from_mapping(cls, table: Mapping[str, Iterable[str]]) -> "TransferPolicy":
        """Build a policy from a ``{"manufacturer": ["distributor", ...]}`` mapping."""
        allowed = {
            OrganizationType(source): frozenset(OrganizationType(d) for d in dests)
            for source, dests in table.items()
        }
        return cls(allowed=MappingProxyType(allowed))

    def allows(self, source_type: OrganizationType, dest_type: OrganizationType) -> bool:
        return dest_type in self.allowed.get(source_type, frozenset())

    def allowed_destinations(self, source_type: OrganizationType) -> frozenset[OrganizationType]:
        return self.allowed.get(source_type, frozenset())

    def check(
        self,
        source_id: UUID,
        source_type: OrganizationType,
        dest_id: UUID,
        dest_type: OrganizationType,
    ) -> None:
        if source_id == dest_id:
            raise TransferNotAllowedError(
                source_type.value, dest_type.value, "cannot transfer to self"
            )
        if not self.allows(source_type, dest_type):
            raise TransferNotAllowedError(source_type.value, dest_type.value)
