"""
Domain services.
"""
