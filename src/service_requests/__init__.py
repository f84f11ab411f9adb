"""
Package marker for source code under `src.service_requests`.
It groups related modules under a stable import path and keeps package boundaries explicit.
The state machine in `lifecycle` is pure; `request_service` persists its results.
"""
