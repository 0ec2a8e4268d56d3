"""
Diligence Labs - Entitlement & Reputation Ledger
================================================

Consulting platform backend for blockchain advisory work.

Scope:
- Reputation points, submitter tiers and monthly project quota
- Subscription plans with consultation credits
- Consultation and report pricing
- Admin notification summary and user dashboard notifications
- Expert applications and project assignments

The pure calculations live in diligence.services and take "now" explicitly.
Database access goes through the global database object.
"""

__version__ = "1.0.0"
__product__ = "Diligence Labs"
