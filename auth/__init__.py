"""auth/ -- Authentication and role-based authorization core for Atlas.

Layer rule: auth/ imports only core/ + stdlib + third-party libraries.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
