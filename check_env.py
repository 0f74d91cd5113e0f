#!/usr/bin/env python3
"""Helper script to check the dispatch configuration and create a template .env file."""

from pathlib import Path
import sys

TEMPLATE = """# Supabase (required)
PLANT_SUPABASE_URL=https://your-project-id.supabase.co
PLANT_SUPABASE_KEY=your-service-role-key-here
PLANT_SUPABASE_SCHEMA=public

# Desk.ly booking system
PLANT_DESKLY_API_KEY=
PLANT_DESKLY_LOCATION_ID=
# JSON array or comma-separated, first room id is floor 1
PLANT_DESKLY_FLOOR_IDS=
PLANT_DESKLY_FLOOR_ROOM_IDS=

# Slack bot
PLANT_SLACK_BOT_TOKEN=xoxb-...
PLANT_SLACK_SIGNING_SECRET=...

# Escalation
PLANT_CONFIRMATION_TIMEOUT_SECONDS=1800
PLANT_DISPLAY_UTC_OFFSET_HOURS=0
"""

REQUIRED = ("supabase_url", "supabase_key", "deskly_api_key", "slack_bot_token", "slack_signing_secret")


def _mask(value: str) -> str:
    return value[:12] + "..." if len(value) > 16 else value


def main() -> int:
    project_root = Path(__file__).parent
    env_file = project_root / ".env"

    print("=" * 60)
    print("Plant Dispatch Configuration Checker")
    print("=" * 60)

    if not env_file.exists():
        env_file.write_text(TEMPLATE, encoding="utf-8")
        print(f"✅ Created template .env file at: {env_file}")
        print("⚠️  Please edit .env and add your credentials!")
        return 1

    sys.path.insert(0, str(project_root / "src"))
    try:
        from plant_dispatch.config import Settings

        settings = Settings()
    except Exception as e:
        print(f"❌ Error loading config: {e}")
        return 1

    missing = []
    for name in REQUIRED:
        value = getattr(settings, name)
        if value:
            print(f"✅ {name}: {_mask(str(value))}")
        else:
            print(f"❌ {name} is not set (PLANT_{name.upper()})")
            missing.append(name)

    print(f"   floors queried for bookings: {list(settings.deskly_floor_ids) or 'none'}")
    print(f"   rooms synced as locations: {list(settings.deskly_floor_room_ids) or 'none'}")
    print(f"   confirmation timeout: {settings.confirmation_timeout_seconds:.0f}s")
    print("=" * 60)
    if missing:
        print("❌ ERROR: configuration incomplete")
        return 1
    print("✅ SUCCESS: dispatch is configured!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
