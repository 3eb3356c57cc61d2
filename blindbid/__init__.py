"""
blindbid - Sealed-bid auction client for a permissioned ledger

A client-side orchestration layer integrating:
- Identity enrollment against per-organization certificate authorities
- Identity-bound ledger sessions
- Endorsement organization selection per auction
- Hidden (transient) bid envelopes
- The auction lifecycle: create, bid, submit, reveal, end
"""

__version__ = "0.1.0"
