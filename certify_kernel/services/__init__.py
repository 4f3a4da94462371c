"""Kernel services: the imperative shell that mutates the ledger."""
