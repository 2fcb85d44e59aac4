"""
Chica's ordering API service.
"""
