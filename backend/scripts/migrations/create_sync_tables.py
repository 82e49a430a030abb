#!/usr/bin/env python3
"""
Script: create_sync_tables.py
Purpose: Create the tables and columns used by the Shopify sync engine

This script:
1. Creates shopify_sync_queue and its indexes
2. Creates system_logs (audit trail)
3. Adds the shopify_* sync columns to intake_items
4. Verifies the objects exist

Every statement is idempotent, the script can be re-run safely.

Usage:
    cd backend && source venv/bin/activate
    python scripts/migrations/create_sync_tables.py [--dry-run]

Options:
    --dry-run    Print the SQL without executing it
"""

import os
import sys
import argparse
import psycopg2
from pathlib import Path

BACKEND_DIR = Path(__file__).parent.parent.parent

from dotenv import load_dotenv

# Load environment
env_path = BACKEND_DIR / '.env.development'
if env_path.exists():
    load_dotenv(env_path)
else:
    load_dotenv(BACKEND_DIR / '.env')

DATABASE_URL = os.getenv("DATABASE_URL")

STATEMENTS = [
    ("Create shopify_sync_queue", """
        CREATE TABLE IF NOT EXISTS shopify_sync_queue (
            id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
            inventory_item_id UUID NOT NULL,
            action TEXT NOT NULL CHECK (action IN ('create', 'update', 'delete')),
            status TEXT NOT NULL DEFAULT 'queued'
                CHECK (status IN ('queued', 'processing', 'completed', 'failed')),
            retry_count INTEGER NOT NULL DEFAULT 0,
            max_retries INTEGER NOT NULL DEFAULT 3,
            error_message TEXT,
            shopify_product_id TEXT,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
            started_at TIMESTAMPTZ,
            completed_at TIMESTAMPTZ
        )
    """),
    ("Index queue by status/created_at", """
        CREATE INDEX IF NOT EXISTS idx_shopify_sync_queue_status_created
            ON shopify_sync_queue (status, created_at)
    """),
    ("Index queue by inventory item", """
        CREATE INDEX IF NOT EXISTS idx_shopify_sync_queue_inventory_item
            ON shopify_sync_queue (inventory_item_id)
    """),
    ("Create system_logs", """
        CREATE TABLE IF NOT EXISTS system_logs (
            id BIGSERIAL PRIMARY KEY,
            level TEXT NOT NULL,
            message TEXT NOT NULL,
            context JSONB NOT NULL DEFAULT '{}'::jsonb,
            source TEXT NOT NULL,
            created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """),
    ("Index system_logs by source/created_at", """
        CREATE INDEX IF NOT EXISTS idx_system_logs_source_created
            ON system_logs (source, created_at DESC)
    """),
    ("Add sync columns to intake_items", """
        ALTER TABLE intake_items
            ADD COLUMN IF NOT EXISTS shopify_product_id TEXT,
            ADD COLUMN IF NOT EXISTS shopify_variant_id TEXT,
            ADD COLUMN IF NOT EXISTS shopify_inventory_item_id TEXT,
            ADD COLUMN IF NOT EXISTS shopify_sync_status TEXT DEFAULT 'unsynced',
            ADD COLUMN IF NOT EXISTS last_shopify_sync_error TEXT,
            ADD COLUMN IF NOT EXISTS last_shopify_synced_at TIMESTAMPTZ
    """),
]

EXPECTED_TABLES = ['shopify_sync_queue', 'system_logs', 'intake_items']


def print_header(title: str):
    """Print formatted header"""
    print(f"\n{'='*60}")
    print(f"  {title}")
    print(f"{'='*60}\n")


def run_statements(cursor, dry_run: bool = False):
    for description, statement in STATEMENTS:
        print(f"  {description}")
        if dry_run:
            print(statement)
            continue
        cursor.execute(statement)


def verify_tables(cursor) -> bool:
    ok = True
    for table in EXPECTED_TABLES:
        cursor.execute("""
            SELECT EXISTS (
                SELECT FROM information_schema.tables
                WHERE table_schema = 'public'
                AND table_name = %s
            )
        """, (table,))
        exists = cursor.fetchone()[0]
        print(f"  {'OK' if exists else 'MISSING'}  {table}")
        ok = ok and exists
    return ok


def main():
    parser = argparse.ArgumentParser(description="Create Shopify sync tables")
    parser.add_argument('--dry-run', action='store_true', help="Print SQL without executing")
    args = parser.parse_args()

    print_header("Shopify sync schema")

    if args.dry_run:
        run_statements(None, dry_run=True)
        return 0

    if not DATABASE_URL:
        print("DATABASE_URL not configured")
        return 1

    conn = psycopg2.connect(DATABASE_URL)
    cursor = conn.cursor()

    try:
        run_statements(cursor)
        conn.commit()
        print_header("Verification")
        return 0 if verify_tables(cursor) else 1
    except Exception as e:
        conn.rollback()
        print(f"Migration failed: {e}")
        raise
    finally:
        cursor.close()
        conn.close()


if __name__ == "__main__":
    sys.exit(main())
