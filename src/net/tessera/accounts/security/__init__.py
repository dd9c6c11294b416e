"""
Credential Handling

This package holds the two primitives the authentication flow is built on:

- passwords.py: Salted bcrypt hashing and verification of account secrets, run off the
  event loop so slow hashing never blocks other requests
- tokens.py: Issuing and verifying signed, time-limited session tokens (HS256 JWTs)

Tokens are stateless. They are verified by signature and expiry only and cannot be
revoked before they expire.
"""
