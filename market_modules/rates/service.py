"""
Rate Config Store (``market_modules.rates.service``).

Responsibility
--------------
Versioned, admin-editable rate configuration.  The store is a pure data
provider: it publishes, lists and serves configuration values and performs
no money computation.

Lifecycle
---------
``initialize`` publishes the first version explicitly; ``publish`` creates
the next version and supersedes the active one.  Readers always receive a
``RateConfigSnapshot`` value, never a live row, so a publish running
concurrently with a settlement cannot hand the settlement a half-updated
configuration.

Failure modes
-------------
* ``current()`` never raises for a missing or corrupt configuration: it logs
  and serves the documented defaults (``version=0``, ``is_fallback=True``).
* ``require_current()`` fails closed with ``RateConfigNotFoundError`` or
  ``RateConfigInvalidError``.  Settlement uses this path.
* ``publish`` raises ``RateConfigInvalidError`` for a config that violates
  its own invariants; nothing is written.
"""

from __future__ import annotations

from pathlib import Path
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from market_config.defaults import default_rate_config
from market_config.loader import (
    compute_checksum,
    load_yaml_file,
    parse_rate_config,
    rate_config_to_dict,
)
from market_config.schema import RateConfig
from market_kernel.domain.clock import Clock, SystemClock
from market_kernel.exceptions import RateConfigInvalidError, RateConfigNotFoundError
from market_kernel.logging_config import get_logger
from market_kernel.services.sequence_service import SequenceService
from market_modules.rates.models import ConfigStatus, RateConfigSnapshot
from market_modules.rates.orm import RateConfigVersionModel

logger = get_logger("modules.rates.service")


class RateConfigStore:
    """
    Versioned store for ``RateConfig``.

    Contract:
        Constructor takes a ``Session`` and an optional ``Clock``.  Write
        methods own the commit/rollback boundary.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()
        self._sequences = SequenceService(session)

    # =========================================================================
    # Reads
    # =========================================================================

    def _active_row(self) -> RateConfigVersionModel | None:
        return self._session.execute(
            select(RateConfigVersionModel)
            .where(RateConfigVersionModel.status == ConfigStatus.ACTIVE.value)
            .order_by(RateConfigVersionModel.version.desc())
            .limit(1)
        ).scalar_one_or_none()

    def require_current(self) -> RateConfigSnapshot:
        """
        The active configuration, failing closed.

        Raises:
            RateConfigNotFoundError: nothing has been published.
            RateConfigInvalidError: the stored payload is corrupt.
        """
        row = self._active_row()
        if row is None:
            raise RateConfigNotFoundError()
        return row.to_dto()

    def current(self) -> RateConfigSnapshot:
        """The active configuration, or the documented defaults."""
        try:
            return self.require_current()
        except (RateConfigNotFoundError, RateConfigInvalidError) as exc:
            logger.warning(
                "rate_config_fallback_to_defaults",
                extra={"reason": exc.code},
            )
            defaults = default_rate_config()
            return RateConfigSnapshot(
                version=0,
                checksum=compute_checksum(rate_config_to_dict(defaults)),
                config=defaults,
                status=ConfigStatus.ACTIVE,
                is_fallback=True,
            )

    def get_version(self, version: int) -> RateConfigSnapshot | None:
        row = self._session.execute(
            select(RateConfigVersionModel).where(RateConfigVersionModel.version == version)
        ).scalar_one_or_none()
        return row.to_dto() if row is not None else None

    def history(self) -> list[RateConfigSnapshot]:
        """All versions, newest first.  Corrupt versions are skipped and logged."""
        rows = self._session.execute(
            select(RateConfigVersionModel).order_by(RateConfigVersionModel.version.desc())
        ).scalars().all()
        snapshots: list[RateConfigSnapshot] = []
        for row in rows:
            try:
                snapshots.append(row.to_dto())
            except RateConfigInvalidError:
                logger.error("rate_config_version_unreadable", extra={"version": row.version})
        return snapshots

    # =========================================================================
    # Writes
    # =========================================================================

    def initialize(
        self,
        actor_id: UUID,
        config: RateConfig | None = None,
    ) -> RateConfigSnapshot:
        """Publish the first version if none exists; otherwise return the active one."""
        if self._active_row() is not None:
            return self.require_current()
        logger.info("rate_config_initializing", extra={"from_defaults": config is None})
        return self.publish(config or default_rate_config(), actor_id)

    def publish(self, config: RateConfig, actor_id: UUID) -> RateConfigSnapshot:
        """
        Publish ``config`` as the next version.

        Postconditions:
            - The new version is the only ``active`` row.
            - The previous active row is ``superseded`` with a timestamp.
        """
        payload = rate_config_to_dict(config)
        # Round-trip so only configs that the store can read back are accepted.
        try:
            parse_rate_config(payload)
        except (KeyError, ValueError) as exc:
            raise RateConfigInvalidError(str(exc)) from exc

        now = self._clock.now()
        checksum = compute_checksum(payload)
        try:
            version = self._sequences.next_value(SequenceService.RATE_CONFIG_VERSION)
            previous = self._active_row()
            if previous is not None:
                previous.status = ConfigStatus.SUPERSEDED.value
                previous.superseded_at = now
                previous.updated_by_id = actor_id

            row = RateConfigVersionModel(
                version=version,
                checksum=checksum,
                payload=payload,
                status=ConfigStatus.ACTIVE.value,
                activated_at=now,
                created_by_id=actor_id,
            )
            self._session.add(row)
            self._session.flush()
            self._session.commit()
        except Exception:
            self._session.rollback()
            logger.error("rate_config_publish_failed", exc_info=True)
            raise

        logger.info(
            "rate_config_published",
            extra={
                "version": version,
                "checksum": checksum,
                "superseded_version": previous.version if previous is not None else None,
                "actor_id": str(actor_id),
            },
        )
        return RateConfigSnapshot(
            version=version,
            checksum=checksum,
            config=config,
            status=ConfigStatus.ACTIVE,
            activated_at=now,
        )

    def publish_from_yaml(self, path: Path, actor_id: UUID) -> RateConfigSnapshot:
        """Parse a YAML rate set and publish it."""
        try:
            config = parse_rate_config(load_yaml_file(path))
        except (KeyError, ValueError) as exc:
            raise RateConfigInvalidError(f"{path}: {exc}") from exc
        return self.publish(config, actor_id)
