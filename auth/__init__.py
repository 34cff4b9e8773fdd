"""auth/ -- Authentication and authorization package for Stallmarket.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
FastAPI appears only in auth/dependencies.py, the dispatch seam.
"""
