"""auth/ -- Authentication, session and authorization package for DevScripts.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or market/.
api/ imports from auth/, not the other way around.
"""
