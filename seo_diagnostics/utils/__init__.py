"""Shared async utilities: correlation ids, rate limiting, retries."""
