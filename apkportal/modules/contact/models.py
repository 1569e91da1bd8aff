# Supabase table: contact_messages
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:
- id: uuid (primary key)
- name: text (not null)
- email: text (not null)
- subject: text (nullable)
- message: text (not null)
- user_id: uuid (nullable, references auth.users.id)
- status: text (default 'new') - one of 'new', 'read', 'replied', 'archived'
- created_at: timestamp (default: now())
- updated_at: timestamp (default: now())

Anyone may insert; only admins (rows in admins) may read or update.
"""
