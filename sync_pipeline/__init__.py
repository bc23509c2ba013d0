"""
sync_pipeline — paginated CRM fetch, field mapping and idempotent upsert.
"""
