"""Runtime settings, read from the environment (see .env)."""
import os

# Managed database (PostgREST dialect)
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_KEY = os.getenv("SUPABASE_KEY", "")

# Content moderation
MODERATION_MODEL = os.getenv("MODERATION_MODEL", "gpt-4o-mini")

# TTLs in seconds
POSTS_TTL_SECONDS = 30
CONNECTIONS_TTL_SECONDS = 30
ANALYSES_TTL_SECONDS = 5 * 60
PROFILES_TTL_SECONDS = 5 * 60
NOTIFICATIONS_TTL_SECONDS = 30

# Foreground refreshes closer together than this are skipped
SESSION_REFRESH_SECONDS = int(os.getenv("SESSION_REFRESH_SECONDS", "300"))

# Fetch limits
FEED_PAGE_SIZE = 20
PROFILES_PAGE_SIZE = 50
