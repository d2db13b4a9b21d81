"""auth/ -- Credential and session security core for the helpdesk API.

PasswordHasher, TokenService, RevocationStore, LoginThrottle and AuthGate,
plus the UserStore and AuthService that compose them into login flows.

Layer rule: auth/ imports stdlib, third-party libraries, core.config and
the cache.store protocol. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
