# Supabase table: installations
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- user_id: uuid (nullable, references auth.users.id)
- app_version_id: uuid (foreign key to app_versions.id, not null)
- device_id: text (not null)
- installation_date: timestamp (default: now())
- device_info: jsonb (nullable)
- status: text - one of 'installed', 'updated', 'uninstalled'
- metadata: jsonb (default '{}')

RPC get_installations_by_version() returns rows of (version_name, count).
"""
