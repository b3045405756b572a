"""
Domain services: movie lifecycle, release reminders and their gateways.
"""
