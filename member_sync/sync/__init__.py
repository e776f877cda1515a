"""
member_sync.sync - Directory synchronization

Pagination, field mapping discovery, reconciliation and company enrichment.
"""
