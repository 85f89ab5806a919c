class PlanetRadioError(RuntimeError):
    pass


class AuthError(PlanetRadioError):
    """Login handshake failed or the session token could not be decoded."""


class StationError(PlanetRadioError):
    pass


class NotFoundError(StationError):
    pass


class NoStreamError(StationError):
    pass


class RelayStartError(PlanetRadioError):
    """The relay could not establish its initial upstream connection."""


class TransientFetchError(PlanetRadioError):
    """A refresh/segment/metadata fetch failed; relays retry these internally."""
