"""Coverage Bounded Context - Propagation Loss Port.

The sweep treats the point-to-point loss model as a collaborator with a
fixed contract: a terrain profile in meters (clutter already added to
interior points), the sample spacing, antenna heights and RF parameters in;
loss in dB, a mode descriptor and a warning code out.

``FreeSpaceKnifeEdgeModel`` is the bundled implementation: free-space
loss plus Deygout multiple knife-edge diffraction (ITU-R P.526) over an
effective earth whose radius follows from surface refractivity, with a
troposcatter floor after ITU-R P.452 for long obstructed paths.
"""

from __future__ import annotations

import logging
import math
from typing import Protocol

import numpy as np
from numpy.typing import NDArray

from domain.coverage.value_objects import LossResult, PropagationParameters

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Warning codes
# ---------------------------------------------------------------------------
CODE_OK = 0
CODE_NEARLY_OUT_OF_RANGE = 1
CODE_DEFAULTS_SUBSTITUTED = 2
CODE_OUT_OF_RANGE = 3
CODE_ERROR = 4

MODE_LOS = "Line-Of-Sight Mode"
MODE_SINGLE_HORIZON = "Single Horizon"
MODE_DOUBLE_HORIZON = "Double Horizon"
DOMINANT_DIFFRACTION = ", Diffraction Dominant"
DOMINANT_TROPOSCATTER = ", Troposcatter Dominant"

_SPEED_OF_LIGHT_MHZ_M = 299.792458  # c / 1e6, so lambda = this / f_MHz
_J_CUTOFF = -0.78  # Below this v the knife-edge loss is negligible
_DEFAULT_REFRACTIVITY = 301.0


class PropagationModel(Protocol):
    """Point-to-point loss model consumed by the radial sweep."""

    def point_to_point(
        self,
        profile_m: NDArray[np.float64],
        spacing_m: float,
        tx_height_m: float,
        rx_height_m: float,
        params: PropagationParameters,
    ) -> LossResult:
        """Loss over ``profile_m`` from its first sample to its last.

        Args:
            profile_m: Ground elevations in meters, transmitter first
            spacing_m: Distance between consecutive samples
            tx_height_m: Transmitter antenna height above ground
            rx_height_m: Receiver antenna height above ground
            params: RF and ground parameters
        """
        ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def free_space_loss_db(distance_m: float, frequency_mhz: float) -> float:
    """Free-space basic transmission loss."""
    d_km = max(distance_m, 1.0) / 1000.0
    return 32.45 + 20.0 * math.log10(frequency_mhz) + 20.0 * math.log10(d_km)


def knife_edge_loss_db(v: NDArray[np.float64] | float) -> NDArray[np.float64]:
    """ITU-R P.526 single knife-edge approximation J(v); 0 for v <= -0.78."""
    v = np.asarray(v, dtype=np.float64)
    w = v - 0.1
    with np.errstate(invalid="ignore"):
        j = 6.9 + 20.0 * np.log10(np.sqrt(w * w + 1.0) + w)
    return np.where(v > _J_CUTOFF, j, 0.0)


def effective_earth_radius_m(refractivity: float) -> float:
    """Effective earth radius for a surface refractivity in N-units."""
    gme = 157e-9 * (1.0 - 0.04665 * math.exp(refractivity / 179.3))
    return 1.0 / gme


def _principal_edge(
    ground: NDArray[np.float64],
    x: NDArray[np.float64],
    start_h: float,
    end_h: float,
    span: float,
    radius_m: float,
    wavelength_m: float,
) -> tuple[int, float]:
    """Index (into ``ground``) and Fresnel parameter of the dominant edge.

    ``ground`` and ``x`` hold the interior points of a sub-path whose
    endpoints sit at heights ``start_h`` (x=0) and ``end_h`` (x=span).
    """
    if ground.size == 0 or span <= 0.0:
        return -1, -math.inf
    d2 = span - x
    bulge = x * d2 / (2.0 * radius_m)
    clearance = ground + bulge - (start_h + (end_h - start_h) * x / span)
    with np.errstate(divide="ignore", invalid="ignore"):
        v = clearance * np.sqrt(2.0 * span / (wavelength_m * x * d2))
    v = np.where(np.isfinite(v), v, -np.inf)
    idx = int(np.argmax(v))
    return idx, float(v[idx])


# ---------------------------------------------------------------------------
# Default model
# ---------------------------------------------------------------------------
class FreeSpaceKnifeEdgeModel:
    """Free-space loss with Deygout diffraction and a troposcatter floor.

    Ground dielectric constant, conductivity, polarization and the
    statistical fractions are range-checked but do not change the result.
    """

    def point_to_point(
        self,
        profile_m: NDArray[np.float64],
        spacing_m: float,
        tx_height_m: float,
        rx_height_m: float,
        params: PropagationParameters,
    ) -> LossResult:
        profile = np.asarray(profile_m, dtype=np.float64)
        n = profile.size
        if n < 2 or not spacing_m > 0.0 or not np.all(np.isfinite(profile)):
            return LossResult(loss_db=0.0, mode=MODE_LOS, error_code=CODE_ERROR)

        code = CODE_OK
        frequency = params.frequency_mhz
        refractivity = params.refractivity
        if not 250.0 <= refractivity <= 400.0:
            refractivity = _DEFAULT_REFRACTIVITY
            code = CODE_DEFAULTS_SUBSTITUTED

        distance = spacing_m * (n - 1)
        if not 20.0 <= frequency <= 20000.0:
            code = max(code, CODE_OUT_OF_RANGE)
        elif (
            not 40.0 <= frequency <= 10000.0
            or not 1.0 <= tx_height_m <= 1000.0
            or not 1.0 <= rx_height_m <= 1000.0
            or distance < 1000.0
        ):
            code = max(code, CODE_NEARLY_OUT_OF_RANGE)

        radius = effective_earth_radius_m(refractivity)
        wavelength = _SPEED_OF_LIGHT_MHZ_M / frequency
        h_tx = float(profile[0]) + tx_height_m
        h_rx = float(profile[-1]) + rx_height_m
        x = spacing_m * np.arange(n, dtype=np.float64)

        free_space = free_space_loss_db(distance, frequency)
        interior = profile[1:-1]
        xi = x[1:-1]

        edge, v_max = _principal_edge(
            interior, xi, h_tx, h_rx, distance, radius, wavelength
        )
        diffraction = float(knife_edge_loss_db(v_max)) if edge >= 0 else 0.0
        horizons = 1 if v_max > 0.0 else 0

        if v_max > 0.0:
            # One level of Deygout sub-paths on either side of the main edge.
            x_edge = float(xi[edge])
            h_edge = float(interior[edge])
            _, v_left = _principal_edge(
                interior[:edge], xi[:edge], h_tx, h_edge, x_edge, radius, wavelength
            )
            _, v_right = _principal_edge(
                interior[edge + 1 :],
                xi[edge + 1 :] - x_edge,
                h_edge,
                h_rx,
                distance - x_edge,
                radius,
                wavelength,
            )
            for v in (v_left, v_right):
                if v > _J_CUTOFF:
                    diffraction += float(knife_edge_loss_db(v))
                if v > 0.0:
                    horizons = 2

        if horizons == 0:
            return LossResult(
                loss_db=free_space + diffraction, mode=MODE_LOS, error_code=code
            )

        scatter = self._troposcatter_loss(
            profile, x, h_tx, h_rx, distance, frequency, refractivity, radius
        )
        base = MODE_SINGLE_HORIZON if horizons == 1 else MODE_DOUBLE_HORIZON
        if scatter < free_space + diffraction:
            return LossResult(
                loss_db=scatter, mode=base + DOMINANT_TROPOSCATTER, error_code=code
            )
        return LossResult(
            loss_db=free_space + diffraction,
            mode=base + DOMINANT_DIFFRACTION,
            error_code=code,
        )

    @staticmethod
    def _troposcatter_loss(
        profile: NDArray[np.float64],
        x: NDArray[np.float64],
        h_tx: float,
        h_rx: float,
        distance: float,
        frequency: float,
        refractivity: float,
        radius: float,
    ) -> float:
        """ITU-R P.452 troposcatter basic loss for the median time percentage."""
        interior = profile[1:-1]
        xi = x[1:-1]
        # Horizon elevation angles (mrad) seen from each terminal
        theta_t = 1000.0 * float(
            np.max((interior - h_tx) / xi - xi / (2.0 * radius))
        )
        back = distance - xi
        theta_r = 1000.0 * float(
            np.max((interior - h_rx) / back - back / (2.0 * radius))
        )
        theta = 1000.0 * distance / radius + theta_t + theta_r
        log_f = math.log10(frequency)
        lf = 25.0 * log_f - 2.5 * math.log10(frequency / 2.0) ** 2
        return (
            190.0
            + lf
            + 20.0 * math.log10(distance / 1000.0)
            + 0.573 * theta
            - 0.15 * refractivity
        )
