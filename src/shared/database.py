from supabase import create_client, Client

from shared.config import get_settings

_client: Client = None


class StoreError(Exception):
    """Persistence failure in the shipment store."""

    pass


def get_supabase_client() -> Client:
    global _client
    if not _client:
        store = get_settings().store
        _client = create_client(store.url, store.key)
    return _client
