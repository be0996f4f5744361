"""
Arena Platform - payment integrity and match dispute services

Backend slice of the esports tournament platform:
1. Gateway payload checksums and webhook replay protection
2. Idempotent wallet deposits and withdrawals
3. Dispute and forfeit resolution for tournament matches
4. Response currency normalization for every JSON payload
"""

__version__ = "1.0.0"
