#!/usr/bin/env python3
"""
Seed the database with demo parishes, registers and registered documents.

The documents go through GeneralRegisterService, so numbers, counters and
audit entries look exactly like those created through the API.

Usage:
    python scripts/seed_demo_data.py --dry-run   # nothing is written
    python scripts/seed_demo_data.py --confirm   # write to the database

Requires migrations to be applied (alembic upgrade head).
"""

import asyncio
import sys
from datetime import date, timedelta
from pathlib import Path

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.models import User, UserRole
from src.core.auth.password import hash_password
from src.core.config import settings
from src.core.database.session import async_session
from src.modules.parishes.models import Parish
from src.modules.registratura.models import DocumentStatus, DocumentType
from src.modules.registratura.schemas import RegisteredDocumentCreate
from src.modules.registratura.service import GeneralRegisterService, RegisterConfigurationService

DEMO_PASSWORD = "demo1234"

PARISHES_DATA = [
    # name, code, address
    ("Parohia Sfantul Nicolae", "SF-NICOLAE", "Str. Bisericii 1, Iasi"),
    ("Parohia Adormirea Maicii Domnului", "ADORMIREA", "Str. Manastirii 12, Suceava"),
    ("Parohia Sfintii Arhangheli", "ARHANGHELI", "Bd. Unirii 5, Cluj-Napoca"),
]

DOCUMENTS_DATA = [
    # type, subject, sender, recipient, status
    (DocumentType.INCOMING, "Cerere eliberare certificat de botez", "Ion Popescu", None, DocumentStatus.DRAFT),
    (DocumentType.INCOMING, "Cerere programare cununie", "Maria si Andrei Ionescu", None, DocumentStatus.IN_WORK),
    (DocumentType.OUTGOING, "Raspuns adresa Primaria", None, "Primaria Municipiului", DocumentStatus.DISTRIBUTED),
    (DocumentType.INTERNAL, "Proces verbal consiliu parohial", None, None, DocumentStatus.DRAFT),
    (DocumentType.INCOMING, "Circulara Arhiepiscopie", "Centrul eparhial", None, DocumentStatus.IN_WORK),
]


async def seed_parishes(session: AsyncSession) -> list[Parish]:
    result = await session.execute(select(Parish).order_by(Parish.id))
    existing = list(result.scalars().all())
    if existing:
        print(f"  {len(existing)} parishes already exist, skip.")
        return existing

    parishes = [Parish(name=name, code=code, address=address) for name, code, address in PARISHES_DATA]
    session.add_all(parishes)
    await session.flush()
    print(f"  Created {len(parishes)} parishes.")
    return parishes


async def seed_users(session: AsyncSession, parishes: list[Parish]) -> int:
    """Creates the demo admin and one secretary per parish. Returns the admin id."""
    result = await session.execute(select(User).where(User.email == "admin@parish.demo"))
    admin = result.scalar_one_or_none()
    if admin:
        print("  Users already exist, skip.")
        return admin.id

    pw = hash_password(DEMO_PASSWORD)
    admin = User(
        email="admin@parish.demo",
        password_hash=pw,
        full_name="Administrator",
        role=UserRole.SUPER_ADMIN.value,
        is_active=True,
    )
    session.add(admin)
    for parish in parishes:
        session.add(
            User(
                email=f"secretariat.{parish.code.lower()}@parish.demo",
                password_hash=pw,
                full_name=f"Secretariat {parish.name}",
                role=UserRole.SECRETARY.value,
                parish_id=parish.id,
                is_active=True,
            )
        )
    await session.flush()
    print(f"  Created admin and {len(parishes)} secretaries (password: {DEMO_PASSWORD}).")
    return admin.id


async def seed_documents(session: AsyncSession, admin_id: int) -> None:
    configs_service = RegisterConfigurationService(session)
    created, skipped = await configs_service.create_for_parishes(created_by_id=admin_id)
    print(f"  Registers: {len(created)} created, {skipped} already present.")

    register_service = GeneralRegisterService(session)
    start = date.today() - timedelta(days=len(DOCUMENTS_DATA))
    count = 0
    for config in await configs_service.list_configurations():
        for offset, (doc_type, subject, sender, recipient, status) in enumerate(DOCUMENTS_DATA):
            await register_service.register_document(
                RegisteredDocumentCreate(
                    register_configuration_id=config.id,
                    document_type=doc_type,
                    subject=subject,
                    sender=sender,
                    recipient=recipient,
                    status=status,
                    idempotency_key=f"demo-{config.id}-{offset}",
                ),
                created_by_id=admin_id,
                registration_date=start + timedelta(days=offset),
            )
            count += 1
    print(f"  Registered {count} documents.")


async def run_seed(session: AsyncSession, dry_run: bool) -> None:
    parishes = await seed_parishes(session)
    admin_id = await seed_users(session, parishes)
    await seed_documents(session, admin_id)

    if dry_run:
        await session.rollback()
        print("\n[DRY-RUN] Rolled back, no data written.")
    else:
        await session.commit()
        print("\nSeed completed successfully.")


async def main() -> None:
    import argparse
    parser = argparse.ArgumentParser(description="Seed database with parish register demo data")
    parser.add_argument("--dry-run", action="store_true", help="Do not commit")
    parser.add_argument("--confirm", action="store_true", help="Commit changes")
    args = parser.parse_args()
    if not args.dry_run and not args.confirm:
        print("Use --dry-run or --confirm")
        sys.exit(1)

    print("Database:", settings.database_url.split("@")[-1] if "@" in settings.database_url else "?")
    print("Mode:", "DRY-RUN" if args.dry_run else "CONFIRM")
    async with async_session() as session:
        await run_seed(session, dry_run=args.dry_run)
    print("Done.")


if __name__ == "__main__":
    asyncio.run(main())
