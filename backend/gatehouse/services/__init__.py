# Services package init
"""
Gatehouse — Services Layer
===========================

Service Inventory:
    - ContextDirectory (abstract): lookups of contexts, memberships, rights
    - MemoryDirectory: in-process directory for development and tests
    - Authenticator (abstract) / SessionAuthenticator: who is acting
    - ContextResolver: which context a request concerns, crumbs, pertinent contexts
    - TokenFeedResolver: feed code → context and principal
    - PermissionGate: any-match authorization with a per-request cache
    - TelemetryRecorder / TelemetryStore: page views and asset accesses
    - ErrorRescueHandler: error reports and representation-aware error responses

Services never touch the ASGI scope directly; they read and write the
request's RequestState.
"""
