"""
Error taxonomy shared by services and routes
Each error knows its HTTP status and renders itself as a JSON payload
"""
from typing import Any, Dict, List, Optional


class SignageError(Exception):
    """Base class for expected, caller-visible failures"""
    status_code = 500
    code = 'error'
    action = None  # Hint for players, e.g. 're_pair'

    def __init__(self, message: str, action: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if action is not None:
            self.action = action

    def to_dict(self) -> Dict[str, Any]:
        payload = {'error': self.message, 'code': self.code}
        if self.action:
            payload['action'] = self.action
        return payload


class NotFound(SignageError):
    status_code = 404
    code = 'not_found'


class Forbidden(SignageError):
    status_code = 403
    code = 'forbidden'


class InvalidCredentials(SignageError):
    status_code = 401
    code = 'invalid_credentials'
    action = 're_pair'


class InvalidCode(SignageError):
    status_code = 400
    code = 'invalid_code'


class InvalidInput(SignageError):
    status_code = 400
    code = 'invalid_input'


class InvalidCommandType(InvalidInput):
    code = 'invalid_command_type'


class Conflict(SignageError):
    status_code = 409
    code = 'conflict'

    def __init__(self, message: str, conflicts: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.conflicts = conflicts or []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.conflicts:
            payload['conflicts'] = self.conflicts
        return payload


class PairingCodeExhausted(SignageError):
    """No free pairing code found within the attempt bound"""
    status_code = 503
    code = 'pairing_code_exhausted'
