# BioChain Test Suite
"""
Test suite including:
- Unit tests (hashing, pool, validator, mining, consensus, config)
- Integration tests (ledger facade, persistence, sync)
- Tampering and concurrency tests

Run with: pytest
Coverage: coverage run -m pytest && coverage report
"""
