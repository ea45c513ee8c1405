"""
Campaign Delivery Service Contract Module

This module contains:
- data_contract.py: Model re-exports and test data factories
"""
