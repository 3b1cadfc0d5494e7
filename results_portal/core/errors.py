from __future__ import annotations


class AuthenticationError(ValueError):
    """Credentials are missing, wrong, or expired."""


class NotFoundError(LookupError):
    pass


class ConflictError(ValueError):
    pass


class JurisdictionError(PermissionError):
    def __init__(self, level: str):
        self.level = level
        super().__init__(f'Outside {level} Jurisdiction')


class RoleHierarchyError(PermissionError):
    pass
