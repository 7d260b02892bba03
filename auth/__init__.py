"""auth/ -- Authentication and session-authorization package for Shelfnote.

Layer rule: auth/ imports only stdlib, third-party libraries, and core/.
It does NOT import from api/, web/, or library/.
api/ and web/ import from auth/, not the other way around.
"""
