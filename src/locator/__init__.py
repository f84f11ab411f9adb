"""
Package marker for source code under `src.locator`.
It groups related modules under a stable import path and keeps package boundaries explicit.
Distance math lives in `geo_distance`; the query entry points live in `mechanic_locator`.
"""
