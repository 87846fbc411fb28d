"""Internal constants shared across the library."""

USER_AGENT = "pytrip/1"

EARTH_RADIUS_M = 6_371_000.0

# ------------------------------------------------------------------
# Fuel/distance-accounting service endpoints
# ------------------------------------------------------------------

UPDATE_DISTANCE_ENDPOINT = "/api/trip/update-distance"
FUEL_CALCULATE_ENDPOINT = "/api/fuel/calculate"
FUEL_REFUEL_ENDPOINT = "/api/fuel/calculate-after-refuel"

#: 4xx statuses that are still worth retrying; every other 4xx is permanent.
RETRYABLE_CLIENT_STATUS_CODES: frozenset[int] = frozenset({408, 429})

#: Marker in an update-distance response meaning "below server threshold".
SKIPPED_STATUS = "skipped"
