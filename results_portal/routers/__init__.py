from results_portal.routers import admin, analytics, auth, entities, marks, public, schools

__all__ = [
    'admin',
    'analytics',
    'auth',
    'entities',
    'marks',
    'public',
    'schools',
]
