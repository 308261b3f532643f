"""
Backend registry and dispatch for the solver stages.

Supports two backends:
1. CPU (NumPy) - Always available, vectorized reference implementation
2. Numba - JIT-compiled parallel loops, one iteration per owned slot

Implementations are registered per stage name. The backend is always
passed explicitly by the caller (the simulation carries it in its
configuration); nothing here changes process-wide state.
"""

import enum
import logging
import warnings
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Union

import numba as nb

from .status import BackendUnavailableError

logger = logging.getLogger(__name__)


class Backend(enum.Enum):
    """Available computation backends."""
    CPU = "cpu"      # NumPy (always available)
    NUMBA = "numba"  # Numba JIT


@dataclass
class BackendInfo:
    """Information about a backend."""
    backend: Backend
    available: bool
    device_name: str = "CPU"
    threads: int = 1


class BackendManager:
    """Holds the implementation registry and backend availability."""

    def __init__(self):
        self._available_backends: Dict[Backend, BackendInfo] = {}
        self._implementations: Dict[str, Dict[Backend, Callable]] = {}
        self._detect_backends()

    def _detect_backends(self):
        """Record which backends can run in this process."""
        self._available_backends[Backend.CPU] = BackendInfo(
            backend=Backend.CPU,
            available=True,
            device_name="CPU (NumPy)"
        )

        threads = nb.config.NUMBA_NUM_THREADS
        self._available_backends[Backend.NUMBA] = BackendInfo(
            backend=Backend.NUMBA,
            available=True,
            device_name=f"CPU (Numba {nb.__version__}"
                        f"{', JIT disabled' if nb.config.DISABLE_JIT else ''})",
            threads=threads
        )

    def resolve(self, backend: Union[str, Backend]) -> Backend:
        """Turn a backend name into an available Backend.

        Raises:
            BackendUnavailableError: Unknown name or backend not usable here
        """
        if isinstance(backend, Backend):
            backend_enum = backend
        else:
            try:
                backend_enum = Backend(str(backend).lower())
            except ValueError:
                choices = ", ".join(b.value for b in Backend)
                raise BackendUnavailableError(
                    f"Invalid backend: {backend}. Choose from: {choices}") from None

        if not self._available_backends[backend_enum].available:
            raise BackendUnavailableError(f"Backend {backend_enum.value} is not available")
        return backend_enum

    def auto_select_backend(self, n_particles: int) -> Backend:
        """Pick a backend from the problem size.

        Numba pays a one-off compile cost, so tiny systems stay on NumPy.
        """
        if self._available_backends[Backend.NUMBA].available and n_particles > 1000:
            return Backend.NUMBA
        return Backend.CPU

    def register_implementation(self, function_name: str, backend: Backend,
                                implementation: Callable):
        """Register a backend-specific implementation.

        Args:
            function_name: Name of the stage
            backend: Backend for this implementation
            implementation: The implementation function
        """
        self._implementations.setdefault(function_name, {})[backend] = implementation

    def has_implementation(self, function_name: str, backend: Backend) -> bool:
        return backend in self._implementations.get(function_name, {})

    def get_implementation(self, function_name: str, backend: Backend) -> Callable:
        """Get implementation for a stage.

        Args:
            function_name: Name of the stage
            backend: Requested backend

        Returns:
            Implementation function

        Raises:
            ValueError: If no implementation found
        """
        if function_name not in self._implementations:
            raise ValueError(f"No implementations registered for {function_name}")

        impls = self._implementations[function_name]
        if backend in impls:
            return impls[backend]

        # Fall back to CPU
        if Backend.CPU in impls:
            warnings.warn(f"No {backend.value} implementation for {function_name}, using CPU")
            return impls[Backend.CPU]

        raise ValueError(f"No implementation found for {function_name}")

    def dispatch(self, function_name: str, *args, backend: Backend = Backend.CPU, **kwargs):
        """Call the implementation of function_name for a backend."""
        impl = self.get_implementation(function_name, backend)
        return impl(*args, **kwargs)

    def describe(self) -> str:
        """Multi-line summary of backend availability."""
        lines = ["SPH Backend Information", "=" * 60]
        for backend, info in self._available_backends.items():
            status = "yes" if info.available else "no"
            lines.append(f"{backend.value:6s} available={status:3s} {info.device_name}")
            if backend == Backend.NUMBA and info.available:
                lines.append(f"       threads: {info.threads}")
        lines.append("=" * 60)
        return "\n".join(lines)


# Registry shared by all simulations; it only holds implementations
_backend_manager = BackendManager()


# Public API
def resolve_backend(backend: Union[str, Backend]) -> Backend:
    return _backend_manager.resolve(backend)


def list_backends() -> Dict[str, bool]:
    """Get dictionary of backend availability."""
    return {
        b.value: info.available
        for b, info in _backend_manager._available_backends.items()
    }


def auto_select_backend(n_particles: int) -> str:
    """Suggest a backend name for a particle count."""
    return _backend_manager.auto_select_backend(n_particles).value


def configure_threads(num_threads: int):
    """Limit the Numba worker count (0 keeps the default)."""
    if num_threads <= 0:
        return
    limit = nb.config.NUMBA_NUM_THREADS
    if num_threads > limit:
        logger.warning("Requested %d threads, Numba allows at most %d", num_threads, limit)
        num_threads = limit
    nb.set_num_threads(num_threads)


def backend_info() -> str:
    return _backend_manager.describe()


def backend_function(function_name: str):
    """Decorator to register backend-specific implementations.

    Usage:
        @backend_function("compute_density")
        @for_backend(Backend.NUMBA)
        def compute_density_numba(...):
            ...
    """
    def decorator(func):
        if hasattr(func, '_backend'):
            _backend_manager.register_implementation(function_name, func._backend, func)
        return func
    return decorator


def for_backend(backend: Backend):
    """Helper decorator to specify backend."""
    def decorator(func):
        func._backend = backend
        return func
    return decorator


def has_implementation(function_name: str, backend: Union[str, Backend]) -> bool:
    if not isinstance(backend, Backend):
        backend = Backend(str(backend).lower())
    return _backend_manager.has_implementation(function_name, backend)


def dispatch(function_name: str, *args, backend: Optional[Union[str, Backend]] = None, **kwargs):
    """Dispatch a stage to a backend.

    Args:
        function_name: Name of the stage
        *args: Positional arguments
        backend: Backend name or enum (None means CPU)
        **kwargs: Keyword arguments

    Returns:
        Function result
    """
    if backend is None:
        backend_enum = Backend.CPU
    elif isinstance(backend, Backend):
        backend_enum = backend
    else:
        backend_enum = Backend(str(backend).lower())
    return _backend_manager.dispatch(function_name, *args, backend=backend_enum, **kwargs)
