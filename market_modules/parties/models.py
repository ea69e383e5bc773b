"""Party DTOs."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class PartyRole(str, Enum):
    """What a party does on the platform."""

    SELLER = "seller"
    BUYER = "buyer"
    SCHOOL = "school"


@dataclass(frozen=True)
class Party:
    """Identity used for settlement checks, invoice snapshots and report names."""

    id: UUID
    role: PartyRole
    display_name: str
    email: str | None = None
    country_code: str | None = None
    company_name: str | None = None
    vat_number: str | None = None

    @property
    def is_business(self) -> bool:
        # Schools buy as organisations; a recorded VAT number marks a business.
        return self.role is PartyRole.SCHOOL or bool(self.vat_number)
