"""
Verification module for worker credential checks.

Initiates checks with external providers (identity, VEVO work rights, WWCC,
NDIS screening, First Aid, ABN, TFN) and reconciles their answers into
verification records and the worker's overall status.
"""
