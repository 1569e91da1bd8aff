# Supabase tables: profiles, devices, online_status, auth.users
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py
# Authentication is handled by Supabase Auth (auth.users table)

"""
Expected Supabase table structure:

profiles:
- id: uuid (primary key, references auth.users.id)
- email: text
- full_name: text (nullable)
- avatar_url: text (nullable)
- phone: text (nullable)
- address: text (nullable)
- preferences: jsonb (default '{}')
- device_info: jsonb (nullable) - last reported device
- last_active: timestamp (nullable)
- is_online: boolean (default false)
- created_at: timestamp (default: now())
- updated_at: timestamp (nullable)

devices:
- user_id: uuid, device_id: text (unique together)
- model, os_version, app_version, installation_id: text (nullable)
- last_connected: timestamp

online_status:
- user_id: uuid (primary key)
- is_online: boolean
- last_updated: timestamp

Note: one profile row per auth user is enforced by the primary key; writes go
through upsert(on_conflict="id") so concurrent first logins cannot race.
"""
