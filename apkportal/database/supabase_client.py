from supabase import create_client, Client
from apkportal.config import settings
import logging

logger = logging.getLogger(__name__)


class SupabaseClient:
    _client: Client = None
    _service_client: Client = None

    @classmethod
    def get_client(cls) -> Client:
        """Anon-key client shared by request handlers"""
        if cls._client is None:
            if not settings.supabase_url or not settings.supabase_key:
                raise RuntimeError("SUPABASE_URL and SUPABASE_KEY must be configured")
            cls._client = create_client(settings.supabase_url, settings.supabase_key)
        return cls._client

    @classmethod
    def get_service_client(cls) -> Client:
        """
        Client with the service_role key; bypasses RLS. Used for bucket management,
        admin reads and the outbox flusher. Without a service key the anon client
        is returned and RLS applies.
        """
        if cls._service_client is None:
            if not settings.supabase_service_role_key:
                logger.warning("SUPABASE_SERVICE_ROLE_KEY not set, admin operations use the anon key")
                return cls.get_client()
            cls._service_client = create_client(
                settings.supabase_url, settings.supabase_service_role_key
            )
        return cls._service_client

    @classmethod
    def reset_client(cls):
        cls._client = None
        cls._service_client = None


def get_supabase() -> Client:
    return SupabaseClient.get_client()


def get_service_supabase() -> Client:
    return SupabaseClient.get_service_client()
