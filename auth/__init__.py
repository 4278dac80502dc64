"""
Login continuation: what runs after the user returns from the OAuth provider.

  ContinuationResolver  — records the follow-up and mints the state token
  CallbackCorrelator    — maps the provider redirect back to its conversation
"""
from auth.correlator import CallbackCorrelator
from auth.resolver import ContinuationResolver

__all__ = ["CallbackCorrelator", "ContinuationResolver"]
