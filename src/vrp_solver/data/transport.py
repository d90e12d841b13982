"""
Distance and duration oracles.

The search only ever calls ``cost(profile, a, b, departure)``; how distances
are obtained is up to the implementation.
"""

import logging
import math

import numpy as np
from geopy.distance import great_circle

logger = logging.getLogger(__name__)


class TransportCost:
    """Interface of a distance/duration oracle."""

    #: Whether answers depend on the departure time.
    time_dependent = False

    @property
    def profiles(self):
        """Profiles this oracle can answer for."""
        raise NotImplementedError

    def has_location(self, location):
        """Return True if the location key is known to the oracle."""
        raise NotImplementedError

    def cost(self, profile, from_location, to_location, departure):
        """
        Distance and duration of a single leg.

        Args:
            profile (str): Routing profile
            from_location: Start location key
            to_location: End location key
            departure (float): Departure time

        Returns:
            tuple: (distance, duration); ``math.inf`` values mark unreachable legs
        """
        raise NotImplementedError


class MatrixTransportCost(TransportCost):
    """
    Routing matrices per profile. Locations are integer indices into the matrices.

    Args:
        matrices (dict): profile -> (distances, durations), each a square
            array-like. Negative or NaN entries are treated as unreachable.
    """

    def __init__(self, matrices):
        self._distances = {}
        self._durations = {}
        size = None

        for profile, (distances, durations) in matrices.items():
            distances = np.asarray(distances, dtype=float)
            durations = np.asarray(durations, dtype=float)

            if distances.ndim != 2 or distances.shape[0] != distances.shape[1]:
                raise ValueError(f"distance matrix of profile {profile!r} is not square")
            if durations.shape != distances.shape:
                raise ValueError(f"duration matrix of profile {profile!r} does not match distance matrix")
            if size is not None and distances.shape[0] != size:
                raise ValueError("all profiles must share the same locations")
            size = distances.shape[0]

            unreachable = np.isnan(distances) | np.isnan(durations) | (distances < 0) | (durations < 0)
            distances = np.where(unreachable, np.inf, distances)
            durations = np.where(unreachable, np.inf, durations)

            self._distances[profile] = distances
            self._durations[profile] = durations

        self.size = size or 0
        logger.debug(f"Matrix transport created for {len(self._distances)} profiles, {self.size} locations")

    @classmethod
    def from_durations(cls, durations, profile="car", speed=1.0):
        """Build a single-profile oracle where distance = duration * speed."""
        durations = np.asarray(durations, dtype=float)
        return cls({profile: (durations * speed, durations)})

    @property
    def profiles(self):
        return list(self._distances)

    def has_location(self, location):
        return isinstance(location, (int, np.integer)) and 0 <= location < self.size

    def cost(self, profile, from_location, to_location, departure):
        return (
            float(self._distances[profile][from_location, to_location]),
            float(self._durations[profile][from_location, to_location]),
        )


class GreatCircleTransportCost(TransportCost):
    """
    Great-circle distances between (latitude, longitude) locations.

    Args:
        speeds (dict): profile -> average speed in kilometers per time unit
        detour_factor (float): Multiplier applied to straight line distance
    """

    def __init__(self, speeds, detour_factor=1.0):
        self.speeds = dict(speeds)
        self.detour_factor = detour_factor

    @property
    def profiles(self):
        return list(self.speeds)

    def has_location(self, location):
        try:
            lat, lon = location
        except (TypeError, ValueError):
            return False
        return -90 <= lat <= 90 and -180 <= lon <= 180

    def cost(self, profile, from_location, to_location, departure):
        speed = self.speeds[profile]
        distance = great_circle(from_location, to_location).kilometers * self.detour_factor
        duration = distance / speed if speed > 0 else math.inf
        return distance, duration
