from __future__ import annotations


class DomainError(Exception):
    code = 'domain_error'
    status_code = 400

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(DomainError):
    code = 'not_found'
    status_code = 404


class InvalidInput(DomainError):
    code = 'invalid_input'
    status_code = 400


class InvalidAmount(InvalidInput):
    code = 'invalid_amount'


class InvalidTransition(DomainError):
    code = 'invalid_transition'
    status_code = 409


class ConflictState(DomainError):
    code = 'conflict_state'
    status_code = 409


class LoginLocked(DomainError):
    code = 'login_locked'
    status_code = 423


class GatewayFailure(DomainError):
    code = 'gateway_failure'
    status_code = 503


class AuthenticationFailed(DomainError):
    code = 'invalid_credentials'
    status_code = 401


class PermissionDenied(DomainError):
    code = 'forbidden'
    status_code = 403


class Unauthenticated(DomainError):
    code = 'unauthenticated'
    status_code = 401
