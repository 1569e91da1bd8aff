# Supabase tables: apk_files, app_versions
# Storage bucket: apk-files (settings.apk_bucket)
# This file documents the expected database schema
# Actual operations are handled via Supabase SDK in service.py

"""
Expected Supabase table structure:

apk_files:
- id: uuid (primary key)
- file_name: text (not null)
- version_name: text (not null)
- version_code: integer (not null)
- file_size: bigint
- mime_type: text
- storage_path: text - "<version_name>/<version_code>/<file_name>" in the bucket (or S3 key)
- public_url: text (nullable) - only set for public buckets
- changelog: text (nullable)
- is_active: boolean (default true)
- checksum: text (nullable) - sha256 of the binary
- created_at, updated_at: timestamp

app_versions:
- id: uuid (primary key)
- version_name: text (not null)
- version_code: integer (unique, not null)
- release_date: timestamp
- is_public: boolean (default true)
- is_required: boolean (default false)
- is_latest: boolean (default false) - at most one row is true, maintained by set_latest_version()
- apk_file_id: uuid (foreign key to apk_files.id)
- changelog: text (nullable)
- created_at, updated_at: timestamp

Reads embed the file and the download count:
    select("*, apk_file:apk_files(*), download_count:downloads(count)")
"""
