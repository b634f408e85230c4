"""auth/ -- Authentication and session security core for the E-Tax API.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Configuration arrives through the
from_settings() constructors, called by api/main.py.
api/ imports from auth/, not the other way around.
"""
