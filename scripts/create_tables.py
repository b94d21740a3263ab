#!/usr/bin/env python3
"""Create database tables and functions for the Lead Response Engine."""

import os
import psycopg2
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL")

SQL = """
-- 1. organizations
CREATE TABLE IF NOT EXISTS organizations (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name VARCHAR(255) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 2. agent_settings (voice agents per organization)
CREATE TABLE IF NOT EXISTS agent_settings (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    provider VARCHAR(20) NOT NULL DEFAULT 'retell',
    agent_role VARCHAR(50) NOT NULL DEFAULT 'outbound_lead',
    retell_agent_id VARCHAR(255),
    vapi_assistant_id VARCHAR(255),
    phone_number VARCHAR(50),
    is_enabled BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_agent_settings_org_id ON agent_settings(organization_id);
CREATE INDEX IF NOT EXISTS idx_agent_settings_retell_agent_id ON agent_settings(retell_agent_id);
CREATE INDEX IF NOT EXISTS idx_agent_settings_vapi_assistant_id ON agent_settings(vapi_assistant_id);

-- 3. provider_settings (per-organization provider credentials)
CREATE TABLE IF NOT EXISTS provider_settings (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    provider VARCHAR(20) NOT NULL,
    api_key TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(organization_id, provider)
);

-- 4. leads
CREATE TABLE IF NOT EXISTS leads (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    campaign_id UUID,
    first_name VARCHAR(100),
    last_name VARCHAR(100),
    email VARCHAR(255),
    phone_number VARCHAR(50) NOT NULL,
    company VARCHAR(255),
    lead_source VARCHAR(100),
    lead_status VARCHAR(30) NOT NULL DEFAULT 'new',
    last_call_date TIMESTAMPTZ,
    notes TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_leads_org_phone ON leads(organization_id, phone_number);

-- 5. call_logs (one row per provider call)
CREATE TABLE IF NOT EXISTS call_logs (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    provider_call_id VARCHAR(255) UNIQUE,
    organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    campaign_id UUID,
    lead_id UUID REFERENCES leads(id) ON DELETE SET NULL,
    provider VARCHAR(20) NOT NULL,
    call_type VARCHAR(20) NOT NULL DEFAULT 'inbound',
    call_status VARCHAR(30) NOT NULL,
    phone_number VARCHAR(50) NOT NULL DEFAULT '',
    from_number VARCHAR(50),
    started_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    ended_at TIMESTAMPTZ,
    duration_seconds INTEGER NOT NULL DEFAULT 0,
    recording_url TEXT,
    transcript TEXT,
    transcript_segments JSONB,
    call_summary TEXT,
    call_sentiment VARCHAR(50),
    appointment_set BOOLEAN NOT NULL DEFAULT FALSE,
    key_topics JSONB,
    outcome VARCHAR(100),
    cost_amount NUMERIC(12, 4),
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS idx_call_logs_org_created ON call_logs(organization_id, created_at);

CREATE OR REPLACE FUNCTION set_updated_at() RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = NOW();
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_call_logs_updated_at ON call_logs;
CREATE TRIGGER trg_call_logs_updated_at
    BEFORE UPDATE ON call_logs
    FOR EACH ROW EXECUTE FUNCTION set_updated_at();

-- 6. billing_usage (one row per organization, day, provider)
CREATE TABLE IF NOT EXISTS billing_usage (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    usage_date DATE NOT NULL,
    provider VARCHAR(20) NOT NULL,
    minutes_used NUMERIC(12, 4) NOT NULL DEFAULT 0,
    calls_made INTEGER NOT NULL DEFAULT 0,
    calls_answered INTEGER NOT NULL DEFAULT 0,
    cost_amount NUMERIC(12, 4) NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE(organization_id, usage_date, provider)
);

CREATE OR REPLACE FUNCTION increment_billing_usage(
    p_organization_id UUID,
    p_usage_date DATE,
    p_provider VARCHAR,
    p_minutes NUMERIC,
    p_calls INTEGER,
    p_answered INTEGER,
    p_cost NUMERIC
) RETURNS VOID AS $$
    INSERT INTO billing_usage (
        organization_id, usage_date, provider,
        minutes_used, calls_made, calls_answered, cost_amount
    )
    VALUES (
        p_organization_id, p_usage_date, p_provider,
        p_minutes, p_calls, p_answered, p_cost
    )
    ON CONFLICT (organization_id, usage_date, provider) DO UPDATE SET
        minutes_used = billing_usage.minutes_used + EXCLUDED.minutes_used,
        calls_made = billing_usage.calls_made + EXCLUDED.calls_made,
        calls_answered = billing_usage.calls_answered + EXCLUDED.calls_answered,
        cost_amount = billing_usage.cost_amount + EXCLUDED.cost_amount,
        updated_at = NOW();
$$ LANGUAGE sql;

-- 7. organization_webhook_tokens (automation webhook credentials)
CREATE TABLE IF NOT EXISTS organization_webhook_tokens (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    token_name VARCHAR(100) NOT NULL,
    token_value VARCHAR(255) NOT NULL UNIQUE,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 8. lead_events (queued automation events)
CREATE TABLE IF NOT EXISTS lead_events (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    event_type VARCHAR(100) NOT NULL,
    event_data JSONB NOT NULL DEFAULT '{}'::jsonb,
    status VARCHAR(20) NOT NULL DEFAULT 'pending',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 9. subscriptions (plan limits)
CREATE TABLE IF NOT EXISTS subscriptions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    organization_id UUID NOT NULL REFERENCES organizations(id) ON DELETE CASCADE,
    stripe_price_id VARCHAR(100),
    monthly_minutes_limit INTEGER,
    status VARCHAR(30) NOT NULL DEFAULT 'active',
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

-- 10. observability_metric_snapshots
CREATE TABLE IF NOT EXISTS observability_metric_snapshots (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    source VARCHAR(100) NOT NULL,
    request_id VARCHAR(100),
    counters JSONB NOT NULL DEFAULT '{}'::jsonb,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

def main():
    print("Connecting to database...")
    conn = psycopg2.connect(DATABASE_URL)
    conn.autocommit = True
    cur = conn.cursor()

    print("Creating tables and functions...")
    cur.execute(SQL)

    cur.execute("SELECT table_name FROM information_schema.tables WHERE table_schema = 'public' ORDER BY table_name;")
    tables = cur.fetchall()
    print(f"\nTables created: {[t[0] for t in tables]}")

    cur.execute("SELECT routine_name FROM information_schema.routines WHERE routine_name = 'increment_billing_usage';")
    print(f"Usage increment function present: {bool(cur.fetchall())}")

    cur.close()
    conn.close()
    print("\nDone!")

if __name__ == "__main__":
    main()
