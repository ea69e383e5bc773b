"""
Party directory.

``PartyDirectory`` is the narrow read interface the money components use.
``SqlPartyDirectory`` is the database-backed implementation; the CRUD layer
that owns user profiles registers parties through ``register``.
"""

from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from market_engines.vat import require_valid_vat_number
from market_kernel.logging_config import get_logger
from market_modules.parties.models import Party, PartyRole
from market_modules.parties.orm import PartyModel

logger = get_logger("modules.parties.directory")


@runtime_checkable
class PartyDirectory(Protocol):
    """Read access to party identities."""

    def get(self, party_id: UUID) -> Party | None: ...

    def get_many(self, party_ids: Iterable[UUID]) -> dict[UUID, Party]: ...


class SqlPartyDirectory:
    """Party directory backed by the ``parties`` table."""

    def __init__(self, session: Session):
        self._session = session

    def get(self, party_id: UUID) -> Party | None:
        row = self._session.get(PartyModel, party_id)
        return row.to_dto() if row is not None else None

    def get_many(self, party_ids: Iterable[UUID]) -> dict[UUID, Party]:
        ids = list(set(party_ids))
        if not ids:
            return {}
        rows = self._session.execute(
            select(PartyModel).where(PartyModel.id.in_(ids))
        ).scalars().all()
        return {row.id: row.to_dto() for row in rows}

    def register(
        self,
        role: PartyRole,
        display_name: str,
        actor_id: UUID,
        *,
        party_id: UUID | None = None,
        email: str | None = None,
        country_code: str | None = None,
        company_name: str | None = None,
        vat_number: str | None = None,
    ) -> Party:
        """
        Add a party and commit.

        Raises:
            InvalidVatNumberError: if ``vat_number`` is given and malformed.
        """
        if vat_number:
            vat_number = require_valid_vat_number(vat_number, country_code)
        party = Party(
            id=party_id or uuid4(),
            role=role,
            display_name=display_name,
            email=email,
            country_code=country_code.upper() if country_code else None,
            company_name=company_name,
            vat_number=vat_number,
        )
        try:
            self._session.add(PartyModel.from_dto(party, created_by_id=actor_id))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
        logger.info("party_registered", extra={"party_id": str(party.id), "role": role.value})
        return party
