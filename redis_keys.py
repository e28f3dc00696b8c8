REDIS_META_KEY = "room:meta:{slug}" # room id - minted room metadata

# **Example `room:meta:{id}` hash fields**
# - `created_at` = ISO timestamp
# - `expires_at` = ISO timestamp (the key TTL is authoritative)
# - `max_participants` = integer
