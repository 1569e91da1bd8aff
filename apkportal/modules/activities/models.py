# Supabase table: user_activities
# Append-only event log written by sign-up/login/logout/download flows.

"""
Expected Supabase table structure:

user_activities:
- id: uuid (primary key, default uuid_generate_v4())
- user_id: uuid (not null, references auth.users.id)
- activity_type: text (not null) - signup, login, logout, download, ...
- activity_data: jsonb (default '{}')
- metadata: jsonb (default '{}')
- created_at: timestamp (default: now())

RPC get_recent_user_activities(user_id, limit_count) returns the newest rows
for a user; older deployments may not have the function or even the table.
"""
