"""Identity gate adapter.

Resolves a bearer credential to an authenticated Identity. The user
directory itself lives elsewhere; this package only verifies tokens
and answers role questions.

Services:
    - JwtIdentityGate: verifies HS256 tokens signed by the auth service.
"""
