"""auth/ -- Credential lifecycle package for keyward.

Password hashing, password policy, signed tokens, the session registry, OTP
reset codes, and the AuthService that orchestrates them.

Layer rule: auth/ imports only stdlib + third-party libraries, plus core/
for settings types. It does NOT import from api/.
api/ imports from auth/, not the other way around.
"""
