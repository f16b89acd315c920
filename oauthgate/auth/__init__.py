"""
Authentication gate for protected routes.

Design goals:
- Provider-agnostic OAuth2 Authorization Code flow (any authorize/token/userinfo triple).
- Server-side sessions; the browser only holds a signed session id cookie.
- Fail-open when OAuth2 is not configured, so development setups work without a provider.
"""
