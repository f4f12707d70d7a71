# Used when a caller does not pass its own ttl and DISTRIBUTED_LOCK_DEFAULT_TTL is not set
DEFAULT_TTL_SECONDS = 60

# How long past its expire_time a row is kept before the cleanup sweep removes it
DEFAULT_CLEANUP_GRACE_PERIOD_SECONDS = 0

# Key prefixes of the account sync jobs
WECHAT_SYNC_LOCK_PREFIX = 'wechat_sync_'
WECHAT_PUBLISHED_SYNC_LOCK_PREFIX = 'wechat_published_sync_'

# A full account sync can take a while, so hold its lock for 30 minutes
SYNC_LOCK_TTL_SECONDS = 60 * 30

# lock_key column width
MAX_LOCK_KEY_LENGTH = 255
