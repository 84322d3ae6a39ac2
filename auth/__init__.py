"""auth/ -- Authentication and authorization core for SiteGuard.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/
(for Settings). It does NOT import from api/.
api/ and main.py import from auth/, not the other way around.
"""
