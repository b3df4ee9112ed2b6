class MalformedEvent(ValueError):
    """Inbound payload cannot be turned into an event; the provider may retry."""


class DuplicateKey(Exception):
    def __init__(self, provider_call_id: str) -> None:
        super().__init__(f"Call {provider_call_id} already exists")
        self.provider_call_id = provider_call_id


class PlacementError(Exception):
    """The telephony provider refused or could not place the call."""
