#!/usr/bin/env python3
"""Create the database tables the TMS sync engine reads and writes."""

import os
import psycopg2
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

SQL = """
-- 1. loads (one row per PortPro reference number)
CREATE TABLE IF NOT EXISTS loads (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    tracking_number VARCHAR(32) UNIQUE NOT NULL,
    portpro_reference VARCHAR(100) UNIQUE NOT NULL,
    portpro_load_id VARCHAR(100),
    status VARCHAR(32) NOT NULL DEFAULT 'booked',
    container_number VARCHAR(32),
    container_size VARCHAR(32),
    container_type VARCHAR(32),
    chassis_number VARCHAR(32),
    seal_number VARCHAR(64),
    weight NUMERIC,
    origin TEXT,
    destination TEXT,
    return_location TEXT,
    customer_name VARCHAR(255),
    customer_email VARCHAR(255),
    customer_phone VARCHAR(64),
    booking_number VARCHAR(100),
    shipping_line VARCHAR(100),
    commodity VARCHAR(255),
    eta TIMESTAMPTZ,
    pickup_time TIMESTAMPTZ,
    last_free_day TIMESTAMPTZ,
    total_miles NUMERIC,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_loads_status ON loads(status);
CREATE INDEX IF NOT EXISTS idx_loads_container_number ON loads(container_number);

-- 2. load_events (append-only trail)
CREATE TABLE IF NOT EXISTS load_events (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    load_id UUID NOT NULL REFERENCES loads(id) ON DELETE CASCADE,
    status VARCHAR(32) NOT NULL,
    description TEXT NOT NULL,
    portpro_event BOOLEAN NOT NULL DEFAULT FALSE,
    source VARCHAR(32) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_load_events_load_id ON load_events(load_id);

-- 3. portpro_webhook_logs (audit log, pruned after 30 days)
CREATE TABLE IF NOT EXISTS portpro_webhook_logs (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    event_type VARCHAR(100) NOT NULL,
    reference_number VARCHAR(100),
    idempotency_key VARCHAR(255) NOT NULL,
    payload JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_portpro_webhook_logs_created_at ON portpro_webhook_logs(created_at);

-- 4. reconciliation_runs
CREATE TABLE IF NOT EXISTS reconciliation_runs (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    status VARCHAR(20) NOT NULL CHECK (status IN ('running', 'completed', 'timed_out', 'failed')),
    triggered_by VARCHAR(100) NOT NULL,
    started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    completed_at TIMESTAMPTZ,
    records_scanned INTEGER NOT NULL DEFAULT 0,
    records_created INTEGER NOT NULL DEFAULT 0,
    records_updated INTEGER NOT NULL DEFAULT 0,
    discrepancies INTEGER NOT NULL DEFAULT 0,
    errors INTEGER NOT NULL DEFAULT 0,
    duration_ms INTEGER,
    error TEXT
);
CREATE INDEX IF NOT EXISTS idx_reconciliation_runs_started_at ON reconciliation_runs(started_at);
CREATE INDEX IF NOT EXISTS idx_reconciliation_runs_status ON reconciliation_runs(status);

-- 5. super_admins
CREATE TABLE IF NOT EXISTS super_admins (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    email VARCHAR(255) UNIQUE NOT NULL,
    name VARCHAR(255),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def main():
    if not DATABASE_URL:
        print("Error: DATABASE_URL must be set in .env")
        raise SystemExit(1)

    conn = psycopg2.connect(DATABASE_URL)
    conn.autocommit = True
    cur = conn.cursor()

    print("Creating tables...")
    cur.execute(SQL)

    cur.execute("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name;")
    tables = cur.fetchall()
    print(f"\nTables present: {[t[0] for t in tables]}")

    cur.close()
    conn.close()
    print("\nDone!")

if __name__ == "__main__":
    main()
