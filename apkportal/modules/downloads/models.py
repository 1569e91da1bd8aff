# Supabase tables: downloads (+ RPCs get_download_count, get_total_downloads)
# Local outbox: "localDownloads" key of the local store

"""
Expected Supabase table structure:

downloads:
- id: uuid (primary key, default uuid_generate_v4())
- app_version_id: uuid (nullable, references app_versions.id)
- app_version: text (nullable) - version name when the id is unknown
- user_id: uuid (nullable, references auth.users.id)
- email: text (nullable)
- user_agent: text
- platform: text
- device_info: jsonb (default '{}') - browser/os/device parsed from user agent
- ip_address: text (default 'anonymous')
- metadata: jsonb (default '{}')
- download_date: timestamp (default: now())
- client_event_id: uuid (unique) - idempotency key, set by this service

Outbox entry (local store, "localDownloads"):
- seq: int - monotonically increasing, never reused
- local_id: "local-<ms>-<seq>"
- idempotency_key: uuid - becomes downloads.client_event_id
- table: "downloads"
- payload: the row to insert
- attempts, last_error, next_attempt_at (epoch seconds), created_at
"""
