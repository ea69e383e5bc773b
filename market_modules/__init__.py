"""
Component modules: persistence plus service glue.

Each module follows the same layout:
    models.py   frozen dataclass DTOs and enums (no I/O)
    orm.py      SQLAlchemy models with ``to_dto()``
    service.py  the service that owns the transaction boundary
"""
