#!/usr/bin/env python3
"""
Bootstrap Script

Creates the tables, seeds the default intake questions and confirmation
footer, and checks the services the assistant depends on. Safe to run more
than once: existing rows are left untouched.

Usage:
    python scripts/bootstrap.py
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.config import settings
from app.core.scheduling.calendar_client import get_calendar_client
from app.core.scheduling.directory import DEFAULT_CONFIRMATION_FOOTER, FOOTER_SETTING_KEY
from app.infra.database import check_db_health, close_db, get_db_context, init_db
from app.infra.redis import RedisClient, check_redis_health
from app.models.database import AppSetting, FormField, Teacher

DEFAULT_FORM_FIELDS = [
    ("nombre", "👤 ¿Cuál es tu nombre completo?", True, 1),
    ("documento", "📄 ¿Cuál es tu número de documento (cédula/DNI)?", True, 2),
    ("email", "📧 ¿Cuál es tu email? (Requerido para confirmación)", True, 3),
    ("objetivo", "🎯 ¿Cuál es el motivo de la cita? (ej: rendimiento académico)", True, 4),
]


def print_header(title: str) -> None:
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print(f"{'='*60}")


def print_result(name: str, success: bool, message: str = "") -> None:
    """Print check result."""
    status = "[PASS]" if success else "[FAIL]"
    color = "\033[92m" if success else "\033[91m"
    reset = "\033[0m"
    msg = f" - {message}" if message else ""
    print(f"  {color}{status}{reset} {name}{msg}")


async def create_tables() -> bool:
    """Create any missing table."""
    try:
        await init_db()
        print_result("Tables", True, "Created or already present")
        return True
    except (SQLAlchemyError, OSError) as e:
        print_result("Tables", False, str(e)[:60])
        return False


async def seed_form_fields() -> None:
    """Insert the default intake questions that are missing."""
    async with get_db_context() as session:
        result = await session.execute(select(FormField.id))
        existing = set(result.scalars().all())

        added = 0
        for field_id, question, required, order in DEFAULT_FORM_FIELDS:
            if field_id in existing:
                continue
            session.add(FormField(id=field_id, question=question, required=required, order=order))
            added += 1

    print_result("Form fields", True, f"{added} added, {len(existing)} already configured")


async def seed_footer() -> None:
    """Set the confirmation footer if it is not configured yet."""
    async with get_db_context() as session:
        current = await session.get(AppSetting, FOOTER_SETTING_KEY)
        if current is None:
            session.add(AppSetting(key=FOOTER_SETTING_KEY, value=DEFAULT_CONFIRMATION_FOOTER))
            print_result("Confirmation footer", True, "Default footer added")
        else:
            print_result("Confirmation footer", True, "Already configured")


async def check_calendars() -> bool:
    """Verify every teacher calendar is reachable."""
    async with get_db_context() as session:
        result = await session.execute(select(Teacher.name, Teacher.calendar_id))
        teachers = result.all()

    calendar_ids = {calendar_id or settings.default_calendar_id for _, calendar_id in teachers}
    calendar_ids.add(settings.default_calendar_id)

    client = get_calendar_client()
    all_ok = True
    try:
        for calendar_id in sorted(calendar_ids):
            ok = await client.verify_access(calendar_id)
            print_result(f"Calendar {calendar_id}", ok, "" if ok else "Share it with the service account as editor")
            all_ok = all_ok and ok
    finally:
        await client.close()

    return all_ok


async def main():
    """Create, seed and verify."""
    print("\n" + "="*60)
    print(f" {settings.app_name} - Bootstrap ({settings.institution_name})")
    print("="*60)

    print_header("Database")
    if not await check_db_health():
        print_result("PostgreSQL", False, "Connection failed - check DATABASE_URL")
        return 1
    print_result("PostgreSQL", True, "Connection successful")

    if not await create_tables():
        return 1

    print_header("Configuration")
    await seed_form_fields()
    await seed_footer()

    print_header("Services")
    if await check_redis_health():
        print_result("Redis", True, "Connection successful")
    else:
        print_result("Redis", False, "Unavailable (sessions will be kept in memory)")
    await RedisClient.close()

    if not settings.calendar_configured:
        print_result("Calendar", False, "Set GOOGLE_SERVICE_ACCOUNT_FILE (or CALENDAR_API_TOKEN)")
    else:
        await check_calendars()

    if not settings.anthropic_api_key:
        print_result("Anthropic API", False, "Not set (free-text replies use a fixed message)")
    else:
        print_result("Anthropic API", True, "Key configured")

    await close_db()

    print_header("Summary")
    print("\n  Bootstrap complete. Start the application with:")
    print("    uvicorn app.main:app --reload")
    print()
    return 0


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
