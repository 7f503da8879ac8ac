"""Automated enforcement: filters, warning accumulator, escalation, case ledger and appeals."""
