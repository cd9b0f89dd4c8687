class SupplyError(Exception):
    """Base class for card supply problems."""


class TransientSupplyFailure(SupplyError):
    """A card source failed or returned nothing usable for this attempt.

    Raised for network errors, timeouts, non-success responses and
    malformed payloads. The supply queue treats it as "zero results" and
    moves on to the next source; it never reaches the round.
    """

    def __init__(self, source_name, reason):
        super().__init__(f"{source_name}: {reason}")
        self.source_name = source_name
        self.reason = reason
