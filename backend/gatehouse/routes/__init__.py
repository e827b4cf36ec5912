"""
Gatehouse — Routes Package
===========================

Route Inventory:
    - contexts.py:    GET  /courses/{course_id}, /accounts/{id}, /groups/{group_id},
                           /users/{id}, /sections/{id}, /collection_items/{id}
                      GET  /, /profile, /calendar, /assignments, /files, /dashboard/files
                      GET  /courses/{course_id}/export[.zip]
                      POST /courses/{course_id}/files
                      GET  /api/v1/... mirrors, /api/v1/users/{id}/contexts
    - feeds.py:       GET  /feeds/calendars/{feed_code}
    - page_views.py:  POST /page_views/{page_view_id}
    - sessions.py:    POST /logout
    - health.py:      GET  /health

Routes stay thin: resolution, authorization and telemetry live in services
and run through the lifecycle middleware.
"""
