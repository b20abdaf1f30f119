"""
Test Suite for the Ride & Food Delivery Analytics Engine

Includes:
- Unit tests for validators, normalizers and the relation store
- Unit and property tests for the calculation primitives
- Scenario tests for the query catalog
- Integration tests for loaders, the query job and the CLI
"""
