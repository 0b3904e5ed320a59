"""
Shared Test Fixtures

Mocks used across test layers.

Structure:
    - sales_order_mocks.py: repository, collaborator and event bus mocks
"""
