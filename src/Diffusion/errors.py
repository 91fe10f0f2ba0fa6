"""Error taxonomy for the distributed diffusion solver.

Every failure is fatal. Errors are raised where they occur and travel
unchanged up to ``DiffusionMPISolver.run``, which applies the abort policy.
"""

from contextlib import contextmanager


class DiffusionError(Exception):
    """Base class for all solver failures."""


class ConfigurationError(DiffusionError, ValueError):
    """Invalid run configuration (e.g. more workers than grid rows)."""


class AllocationError(DiffusionError):
    """Host or accelerator memory could not be allocated."""


class AcceleratorError(DiffusionError):
    """Kernel launch, memory copy or stream operation failed.

    Parameters
    ----------
    operation : str
        Name of the failing accelerator operation.
    """

    def __init__(self, operation: str, detail: str = ""):
        self.operation = operation
        message = f"accelerator operation '{operation}' failed"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class TransportError(DiffusionError):
    """Halo message send/receive failed; neighbors are now desynchronized."""


CUDA_ERROR_OUT_OF_MEMORY = 2


@contextmanager
def accelerator_op(operation: str):
    """Translate accelerator runtime failures into the solver's error kinds.

    Out-of-memory becomes ``AllocationError``; anything else raised by the
    runtime becomes ``AcceleratorError`` carrying the operation name.
    """
    try:
        yield
    except DiffusionError:
        raise
    except MemoryError as exc:
        raise AllocationError(f"{operation}: out of host memory") from exc
    except Exception as exc:
        if getattr(exc, "code", None) == CUDA_ERROR_OUT_OF_MEMORY:
            raise AllocationError(f"{operation}: out of device memory") from exc
        raise AcceleratorError(operation, str(exc)) from exc
