"""Contracts package.

This package defines the *public* notification contract of the ledger: stream names,
envelope fields, and v1 payload semantics. Observers may only rely on what is
declared here and in `src.core.models`.
"""
