"""Error taxonomy shared by services and routers.

Services raise these; `main.py` maps them to HTTP responses so the
core operations stay usable without a request framework.
"""


class LedgerError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(LedgerError):
    status_code = 400


class Unauthorized(LedgerError):
    status_code = 401


class Forbidden(LedgerError):
    status_code = 403


class NotFound(LedgerError):
    status_code = 404


class Conflict(LedgerError):
    status_code = 409
