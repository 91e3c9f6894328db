"""
bg-blaster: single-page background removal.

Exposes the model session, compositor and UI state machine behind a small
FastAPI application.
"""
