"""security/ -- Account-security core: 2FA, sessions, lockout, audit, scoring.

Layer rule: security/ imports from core/ and third-party libraries only.
Components never import security/store.py; they receive a SecurityRepository
through their constructor. Only service.py and the CLI build a SecurityStore.
"""
