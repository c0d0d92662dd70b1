class CelebrationsError(Exception):
    """Base error for the delivery pipeline"""


class OwnerNotFoundError(CelebrationsError):
    """The event owner has no user record, so there is nowhere to send the preview"""

    def __init__(self, owner_aad_object_id: str) -> None:
        super().__init__(f"User {owner_aad_object_id} not found in repository")
        self.owner_aad_object_id = owner_aad_object_id


class GatewayTransportError(CelebrationsError):
    """Network/IO failures persisted after the configured retries"""


class GatewayAuthenticationError(CelebrationsError):
    """The gateway rejected a freshly acquired token"""


class TokenAcquisitionError(CelebrationsError):
    """The identity provider did not return an access token"""


class UntrustedServiceUrlError(CelebrationsError):
    """Outbound call to a service URL that was never registered as trusted"""
