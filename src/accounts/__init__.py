"""
Package marker for source code under `src.accounts`.
It groups related modules under a stable import path and keeps package boundaries explicit.
Records are declared in `account_models`; invariants live in `account_rules` and persistence in `account_store`.
"""
