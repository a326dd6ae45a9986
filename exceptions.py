"""
Exceptions raised by the attribution engine.

Every error derives from AttributionError and carries a `details` dict with
the identifiers involved, so callers can surface it without parsing the
message. Materialization aborts with one of DealNotFoundError,
InvalidDealStateError or NoTouchpointsError before anything is written.
"""


def _details(**values) -> dict:
    """Keep only the values that were given."""
    return {key: value for key, value in values.items() if value is not None}


class AttributionError(Exception):
    """Root of the engine's exception hierarchy."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(AttributionError):
    """Bad argument: unknown model, unsupported status, etc."""

    def __init__(self, message: str, field: str = None, value=None):
        super().__init__(message, _details(field=field, value=value))
        self.field = field
        self.value = value


class DatabaseError(AttributionError):
    """A storage operation failed and was rolled back."""

    def __init__(self, message: str, operation: str = None, query: str = None):
        super().__init__(message, _details(operation=operation, query=query[:200] if query else None))
        self.operation = operation
        self.query = query


class ConfigurationError(AttributionError):
    """An environment setting could not be parsed."""

    def __init__(self, message: str, setting_key: str = None):
        super().__init__(message, _details(setting_key=setting_key))
        self.setting_key = setting_key


class DealNotFoundError(AttributionError):
    """The deal does not exist or belongs to another organization."""

    def __init__(self, deal_id: str):
        super().__init__(f"Deal not found or unauthorized: {deal_id}", _details(deal_id=deal_id))
        self.deal_id = deal_id


class PartnerNotFoundError(AttributionError):
    """The partner does not exist or belongs to another organization."""

    def __init__(self, partner_id: str):
        super().__init__(f"Partner not found or unauthorized: {partner_id}", _details(partner_id=partner_id))
        self.partner_id = partner_id


class InvalidDealStateError(AttributionError):
    """The deal's status does not allow the requested operation."""

    def __init__(self, deal_id: str, status: str, expected: str = None):
        if expected:
            message = f"Deal {deal_id} is {status}, expected {expected}"
        else:
            message = f"Deal {deal_id} is already {status}"
        super().__init__(message, _details(deal_id=deal_id, status=status, expected=expected))
        self.deal_id = deal_id
        self.status = status
        self.expected = expected


class NoTouchpointsError(AttributionError):
    """A won deal has no touchpoints to attribute."""

    def __init__(self, deal_id: str):
        super().__init__(f"Cannot calculate attribution without touchpoints: {deal_id}", _details(deal_id=deal_id))
        self.deal_id = deal_id
