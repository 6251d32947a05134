"""auth/ -- Authentication core for Connect.

passwords (bcrypt) -> tokens (JWT) -> governor (login lockout over an
attempt store) -> dependencies (bearer-token gate for FastAPI routes).

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/. api/ imports from auth/, not the other way around.
"""
