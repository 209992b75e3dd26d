"""
Org-scoped key/value store.

Holds per-organization integration settings such as the messaging gateway
URL and API key. Keys are the values of ``OrganizationVariableKey``.
"""

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from clinic_notify.models.organization_variable import OrganizationVariable, OrganizationVariableKey

logger = logging.getLogger(__name__)


def _key(key: OrganizationVariableKey | str) -> str:
    return OrganizationVariableKey(key).value


async def get_many(
    db: AsyncSession,
    org_id: UUID,
    keys: list[OrganizationVariableKey],
) -> dict[OrganizationVariableKey, str | None]:
    """Fetch several keys in one query. Missing keys map to None."""
    wanted = {_key(k): OrganizationVariableKey(k) for k in keys}
    stmt = select(OrganizationVariable.key, OrganizationVariable.value).where(
        OrganizationVariable.org_id == org_id,
        OrganizationVariable.key.in_(list(wanted)),
    )
    result = await db.execute(stmt)

    values: dict[OrganizationVariableKey, str | None] = {k: None for k in wanted.values()}
    for row_key, row_value in result.all():
        values[wanted[row_key]] = row_value or None
    return values


async def set_value(
    db: AsyncSession,
    org_id: UUID,
    key: OrganizationVariableKey,
    value: str | None,
    updated_by: UUID | None = None,
) -> None:
    """Insert or update a variable and commit."""
    stmt = select(OrganizationVariable).where(
        OrganizationVariable.org_id == org_id,
        OrganizationVariable.key == _key(key),
    )
    result = await db.execute(stmt)
    existing = result.scalar_one_or_none()

    if existing is None:
        db.add(OrganizationVariable(
            org_id=org_id,
            key=_key(key),
            value=value,
            created_by=updated_by,
        ))
    else:
        existing.value = value
        if updated_by:
            existing.updated_by = updated_by

    await db.commit()
    logger.info("organization_variables: set %s for org %s", _key(key), org_id)
