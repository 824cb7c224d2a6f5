"""auth/ -- Credential verification, token issuance and refresh lifecycle for AccountGate.

Layer rule: auth/ imports only stdlib + third-party libraries.
It does NOT import from api/ or core/. Configuration values are handed in
through constructors; api/ imports from auth/, not the other way around.
"""
