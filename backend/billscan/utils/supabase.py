from supabase import create_client, Client
from billscan.config import settings

def get_supabase_client() -> Client:
    """
    Create and return a Supabase client instance.
    Uses the service role key; field mappings are read across users.
    """
    supabase: Client = create_client(
        settings.SUPABASE_URL,
        settings.SUPABASE_SERVICE_KEY
    )
    return supabase
