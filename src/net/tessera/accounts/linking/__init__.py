"""
Third-Party Account Linking

This package attaches a handle from an external service to an existing account using a
redirect based authorization code flow. The external service is a collaborator reached
over plain HTTP; its contract is:

1. The user is redirected to its authorization endpoint with our client id, an opaque
   `state` and a base64 encoded callback URL
2. It redirects back to the callback with a one-time `code` and the same `state`
3. The code is exchanged at its token endpoint for an access token
4. The access token is used to read the user's profile, which carries the handle

Modules:
- state.py: Pending link requests stored in Redis, keyed by state, single use
- provider.py: HTTP calls to the external service
- flow.py: The two stages of the flow (`link_init`, `link_complete`)
"""
