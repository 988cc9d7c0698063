"""Check-in ledger and QR scanning."""
