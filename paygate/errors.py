"""Exception hierarchy shared by services and blueprints.

Services raise these; blueprints translate them to JSON responses using
``status_code``. Anything outside this hierarchy is treated as a 500.
"""


class PaygateError(Exception):
    status_code = 500


class ValidationError(PaygateError):
    status_code = 400


class AuthenticationError(PaygateError):
    status_code = 401


class NotFoundError(PaygateError):
    status_code = 404


class SignatureError(PaygateError):
    status_code = 400


class MissingSignatureError(SignatureError):
    pass


class InvalidSignatureError(SignatureError):
    pass
