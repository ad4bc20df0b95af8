"""Tier policy, monthly usage ledger and tier gate."""
