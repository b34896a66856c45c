#!/usr/bin/env python3
"""
Database initialization script for the red packet service.

Creates all tables and reports connection health.
"""
import sys

from dotenv import load_dotenv

load_dotenv()

from redpacket.config import get_config  # noqa: E402
from redpacket.database import close_all, get_database_url, get_health_status, init_all  # noqa: E402


def main():
    """Initialize database and create all tables."""
    print("=" * 60)
    print("RedPacket Database Initialization")
    print("=" * 60)

    cfg = get_config()
    try:
        db_url = get_database_url(cfg)
        print(f"\nDatabase: {db_url.split('@')[1] if '@' in db_url else db_url}")

        print("\nCreating database tables...")
        init_all(cfg, create_tables=True)
        print("All tables created")

        health = get_health_status()
        print("\nHealth:")
        print(f"  Database: {health['database']['status']}")
        print(f"  Redis: {health['redis']['status']}")

        if health["database"]["status"] != "healthy":
            print("\nDatabase is not healthy. Check configuration.")
            return 1
        if cfg.get("REDIS_URL") and health["redis"]["status"] != "healthy":
            print("\nREDIS_URL is set but Redis is not healthy; claim locks fall back to this process.")
        print("\nDatabase initialization complete.")
        return 0
    finally:
        close_all()


if __name__ == "__main__":
    sys.exit(main())
