"""
Package marker for source code under `src.storage`.
It groups related modules under a stable import path and keeps package boundaries explicit.
"""
