# Supabase Auth
# This module uses Supabase's built-in authentication system
# Supabase Auth handles:
# - User registration (auth.users table)
# - Email/password and OAuth (Google, GitHub) sign-in
# - JWT token generation and validation
# - Password hashing and security

"""
Supabase Auth provides:
- auth.sign_up() - Register new users
- auth.sign_in_with_password() - Authenticate users
- auth.sign_in_with_oauth() - Provider redirect URL
- auth.exchange_code_for_session() - Complete the OAuth callback
- auth.get_user() - Get current user from JWT token
- auth.admin.sign_out(jwt) - Revoke the session behind a token

When Supabase is unreachable, sign-up and sign-in fall back to accounts kept in
the local store under "localUsers" (ids prefixed "local-", salted PBKDF2
password hashes). Each signed-in session is cached under "sessions", keyed by
the SHA-256 of its bearer token; offline sign-ins get a "local-session-" token.

admins:
- user_id: uuid (references auth.users.id) - presence grants admin routes
"""
