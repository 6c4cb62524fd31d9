"""
Registration number allocation for the general register.

Each numbering scope (register configuration, plus the year when the register
resets annually) owns one row in register_counters holding the last issued
number. Allocation is a single atomic UPDATE ... RETURNING on that row, so
concurrent writers serialize on the row lock instead of racing on MAX()+1.

Allocation only hands out a candidate: the caller must insert the document in
the same transaction. Rolling the transaction (or savepoint) back also rolls
the counter back, so no number is ever skipped.
"""
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import ConflictError, NotFoundError, ValidationError
from src.modules.registratura.models import (
    RegisterConfiguration,
    RegisterCounter,
    RegisteredDocument,
)

logger = logging.getLogger(__name__)

MIN_YEAR = 1900
MAX_YEAR = 2999


@dataclass(frozen=True)
class AllocatedNumber:
    document_number: int
    year: int
    scope_year: int


async def get_register_configuration(
    session: AsyncSession, register_config_id: int
) -> RegisterConfiguration:
    """Load a register configuration or raise NotFoundError."""
    result = await session.execute(
        select(RegisterConfiguration).where(RegisterConfiguration.id == register_config_id)
    )
    config = result.scalar_one_or_none()
    if config is None:
        raise NotFoundError("Register configuration", register_config_id)
    return config


def resolve_year(year: int | None) -> int:
    if year is None:
        return datetime.now().year
    if year < MIN_YEAR or year > MAX_YEAR:
        raise ValidationError(f"Year must be between {MIN_YEAR} and {MAX_YEAR}", field="year")
    return year


async def _increment_counter(
    session: AsyncSession, register_config_id: int, scope_year: int
) -> int | None:
    """Atomically bump the scope counter. Returns None when the scope has no counter yet."""
    stmt = (
        update(RegisterCounter)
        .where(
            RegisterCounter.register_configuration_id == register_config_id,
            RegisterCounter.scope_year == scope_year,
        )
        .values(last_number=RegisterCounter.last_number + 1)
        .returning(RegisterCounter.last_number)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def _max_document_number(
    session: AsyncSession, register_config_id: int, scope_year: int
) -> int | None:
    stmt = select(func.max(RegisteredDocument.document_number)).where(
        RegisteredDocument.register_configuration_id == register_config_id,
        RegisteredDocument.scope_year == scope_year,
    )
    result = await session.execute(stmt)
    return result.scalar()


async def _first_number_in_scope(
    session: AsyncSession, config: RegisterConfiguration, scope_year: int
) -> int:
    # Documents registered before the scope had a counter continue from their max
    current_max = await _max_document_number(session, config.id, scope_year)
    if current_max is None:
        return config.starting_number
    return current_max + 1


async def _seed_counter(
    session: AsyncSession, config: RegisterConfiguration, scope_year: int
) -> int:
    """Create the scope counter with its first number already issued."""
    first_number = await _first_number_in_scope(session, config, scope_year)
    try:
        async with session.begin_nested():
            session.add(
                RegisterCounter(
                    register_configuration_id=config.id,
                    scope_year=scope_year,
                    last_number=first_number,
                )
            )
    except IntegrityError:
        # Another writer created the counter first; take the next number from it
        logger.info(
            "Counter for register %s scope %s created concurrently, incrementing instead",
            config.id,
            scope_year,
        )
        number = await _increment_counter(session, config.id, scope_year)
        if number is None:
            raise ConflictError(
                "Could not allocate a registration number, please retry",
                details={"register_configuration_id": config.id},
            )
        return number
    return first_number


async def allocate_document_number(
    session: AsyncSession, register_config_id: int, year: int | None = None
) -> AllocatedNumber:
    """
    Allocate the next registration number for a register.

    Args:
        session: Database session; the document must be inserted in the same transaction
        register_config_id: Register configuration ID
        year: Registration year (default: current calendar year)

    Returns:
        AllocatedNumber with the number, the registration year and the scope year

    Raises:
        NotFoundError: If the register configuration does not exist
        ValidationError: If year is out of range
        ConflictError: If the scope counter could not be created or incremented
    """
    effective_year = resolve_year(year)
    config = await get_register_configuration(session, register_config_id)
    scope_year = config.scope_year_for(effective_year)

    number = await _increment_counter(session, config.id, scope_year)
    if number is None:
        number = await _seed_counter(session, config, scope_year)

    return AllocatedNumber(document_number=number, year=effective_year, scope_year=scope_year)


async def peek_next_document_number(
    session: AsyncSession, register_config_id: int, year: int | None = None
) -> AllocatedNumber:
    """Number the next registration would get right now. Reserves nothing."""
    effective_year = resolve_year(year)
    config = await get_register_configuration(session, register_config_id)
    scope_year = config.scope_year_for(effective_year)

    result = await session.execute(
        select(RegisterCounter.last_number).where(
            RegisterCounter.register_configuration_id == config.id,
            RegisterCounter.scope_year == scope_year,
        )
    )
    last_number = result.scalar_one_or_none()
    if last_number is None:
        number = await _first_number_in_scope(session, config, scope_year)
    else:
        number = last_number + 1
    return AllocatedNumber(document_number=number, year=effective_year, scope_year=scope_year)


async def resync_counter(session: AsyncSession, register_config_id: int, scope_year: int) -> None:
    """
    Move a scope counter forward to the highest registered number.

    Needed when documents were written without going through the counter
    (imports, manual fixes); otherwise every allocation would collide.
    """
    current_max = await _max_document_number(session, register_config_id, scope_year)
    if current_max is None:
        return
    stmt = (
        update(RegisterCounter)
        .where(
            RegisterCounter.register_configuration_id == register_config_id,
            RegisterCounter.scope_year == scope_year,
            RegisterCounter.last_number < current_max,
        )
        .values(last_number=current_max)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    if result.rowcount:
        logger.warning(
            "Register %s scope %s counter was behind registered documents, moved to %s",
            register_config_id,
            scope_year,
            current_max,
        )
