"""Exception taxonomy for the clustering pipeline.

Every error carries a stable ``code`` (surfaced in run results) and a
``retryable`` flag so schedulers can decide whether to try again.
"""

from uuid import UUID


class HotspotsError(Exception):
    """Base class for all clustering pipeline errors."""

    code = "hotspots_error"
    retryable = False


class MissingPrerequisite(HotspotsError):
    """Raised when enriched tagging or signal text is absent.

    The upstream tagging stage must run before features can be generated.
    """

    code = "missing_prerequisite"

    def __init__(self, signal_id: UUID | str | None, missing: str):
        self.signal_id = signal_id
        self.missing = missing
        super().__init__(
            f"Signal {signal_id} is missing {missing}; run enhanced tagging first"
        )


class ConfigurationError(HotspotsError, ValueError):
    """Raised when clustering parameters are invalid."""

    code = "configuration_error"


class InsufficientData(HotspotsError):
    """Raised when fewer usable signals than min_cluster_size are available.

    Not a failure: the run completes successfully with zero clusters.
    """

    code = "insufficient_data"

    def __init__(self, available: int, required: int):
        self.available = available
        self.required = required
        super().__init__(
            f"Insufficient signals for clustering: {available} available, "
            f"{required} required"
        )


class ComputationFailure(HotspotsError):
    """Raised when distance or clustering math fails."""

    code = "computation_failure"


class RunTimeout(HotspotsError):
    """Raised when a run exceeds its wall-clock budget before persistence."""

    code = "run_timeout"
    retryable = True

    def __init__(self, elapsed_seconds: float, budget_seconds: float):
        self.elapsed_seconds = elapsed_seconds
        self.budget_seconds = budget_seconds
        super().__init__(
            f"Clustering run exceeded its budget: {elapsed_seconds:.1f}s > "
            f"{budget_seconds:.1f}s"
        )


class PersistenceConflict(HotspotsError):
    """Raised when a write loses a race against a concurrent run."""

    code = "persistence_conflict"
    retryable = True


class SignalNotFound(HotspotsError, LookupError):
    """Raised when a signal id does not exist."""

    code = "signal_not_found"

    def __init__(self, signal_id: UUID | str):
        self.signal_id = signal_id
        super().__init__(f"Signal not found: {signal_id}")
