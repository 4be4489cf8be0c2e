"""auth/ -- Authentication core for Notekeeper.

Account provisioning, one-time passcodes, Google identity linking and
session tokens. AuthService in auth/service.py is the entry point; the other
modules are its collaborators and are wired together by api/main.py.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Configuration arrives through
constructor arguments. api/ imports from auth/, not the other way around.
auth/dependencies.py is the one FastAPI-aware module in this package.
"""
