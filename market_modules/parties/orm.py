"""Party ORM model."""

from uuid import UUID

from sqlalchemy import Index, String
from sqlalchemy.orm import Mapped, mapped_column

from market_kernel.db.base import TrackedBase


class PartyModel(TrackedBase):
    """ORM model for ``Party``."""

    __tablename__ = "parties"

    role: Mapped[str] = mapped_column(String(20), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    country_code: Mapped[str | None] = mapped_column(String(2), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    vat_number: Mapped[str | None] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        Index("idx_party_role", "role"),
    )

    def to_dto(self):
        from market_modules.parties.models import Party, PartyRole
        return Party(
            id=self.id,
            role=PartyRole(self.role),
            display_name=self.display_name,
            email=self.email,
            country_code=self.country_code,
            company_name=self.company_name,
            vat_number=self.vat_number,
        )

    @classmethod
    def from_dto(cls, dto, created_by_id: UUID) -> "PartyModel":
        return cls(
            id=dto.id,
            role=dto.role.value,
            display_name=dto.display_name,
            email=dto.email,
            country_code=dto.country_code,
            company_name=dto.company_name,
            vat_number=dto.vat_number,
            created_by_id=created_by_id,
        )

    def __repr__(self) -> str:
        return f"<PartyModel {self.role}: {self.display_name}>"
