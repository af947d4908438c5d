"""Uploaders that push processed resources to the remote platform.

Modules:
    base — Uploader ABC and the resource -> upload call dispatch
    http — httpx-backed implementation
"""
