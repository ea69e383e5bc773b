"""Party directory: sellers, buyers and schools known to the platform."""

from market_modules.parties.directory import PartyDirectory, SqlPartyDirectory
from market_modules.parties.models import Party, PartyRole

__all__ = ["Party", "PartyDirectory", "PartyRole", "SqlPartyDirectory"]
