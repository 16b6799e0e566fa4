"""
Flask extensions initialization.
Extensions are initialized here and then initialized with the app in app.py.
"""

from flask_caching import Cache

# Slot enumeration cache (read paths only)
cache = Cache()
