"""auth/ -- Accounts, passwords, session tokens and password reset for ProgressTrack.

Layer rule: auth/ imports only stdlib, third-party libraries and core/.
It does NOT import from api/ or notify/.
api/ and notify/ import from auth/, not the other way around.
"""
