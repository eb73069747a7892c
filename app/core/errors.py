"""Error taxonomy shared by the API and the sender/receiver agents."""


class ProximityTrackerError(Exception):
    """Base class for all proximity tracker errors."""

    status_code: int = 500


class ValidationError(ProximityTrackerError):
    """Missing or malformed input."""

    status_code = 400


class TrackingUnavailableError(ValidationError):
    """Tracking was requested before a key pair is available."""


class NotFoundError(ProximityTrackerError):
    """Unknown sender identifier, or no usable record for it."""

    status_code = 404


class EncryptionError(ProximityTrackerError):
    """Plaintext could not be encrypted (oversized payload or bad public key)."""


class DecryptionError(ProximityTrackerError):
    """Ciphertext could not be decrypted with the given private key."""


class GeolocationError(ProximityTrackerError):
    """Position could not be acquired (denied, unavailable or timed out)."""


class NetworkError(ProximityTrackerError):
    """Transient transport failure talking to the tracker API."""

    status_code = 503
