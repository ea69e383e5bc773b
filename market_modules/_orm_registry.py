"""Import every ORM module so ``Base.metadata`` knows all tables."""


def import_all_orm_models() -> None:
    import market_kernel.services.sequence_service  # noqa: F401
    import market_modules.invoicing.orm  # noqa: F401
    import market_modules.parties.orm  # noqa: F401
    import market_modules.rates.orm  # noqa: F401
    import market_modules.revenue.orm  # noqa: F401
    import market_modules.settlement.orm  # noqa: F401
    import market_modules.tiers.orm  # noqa: F401
