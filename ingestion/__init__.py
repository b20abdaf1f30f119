"""
Data Ingestion Module

Turns loader-native rows into canonical, validated records:
- normalizers for identifiers, numbers and timestamps
- validators for rides, food orders, drivers and restaurants
"""

__version__ = "0.1.0"
