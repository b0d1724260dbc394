"""
Exception Types

Failures surfaced to callers of the calibration and geometry components.
"""


class DegenerateInputError(ValueError):
    """Input is structurally insufficient: too few, collinear or coincident points."""


class ConfigurationMismatchError(DegenerateInputError):
    """Left and right observation sets do not describe the same views."""


class CalibrationDivergedError(RuntimeError):
    """The nonlinear refinement step did not converge to a usable solution."""
