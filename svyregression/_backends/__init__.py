"""
Backend selection and management.

Provides a unified interface for the computational backends that solve the
weighted least-squares step of each IRLS iteration.
"""

from .base import BackendBase, LinearModelResult
from .cpu_fp64_backend import CPUBackendFP64


def get_backend(backend='auto') -> BackendBase:
    """
    Get computational backend.

    Parameters
    ----------
    backend : str or BackendBase
        Backend selection:
        - 'auto': Best available backend
        - 'cpu': CPU with NumPy (FP64, R-compatible)
        A BackendBase instance is returned unchanged.

    Returns
    -------
    BackendBase
        Backend instance

    Examples
    --------
    >>> backend = get_backend('auto')
    >>> backend.name
    'cpu_fp64'
    """
    if isinstance(backend, BackendBase):
        return backend

    if backend in ('auto', 'cpu'):
        return CPUBackendFP64()

    raise ValueError(
        f"Unknown backend: '{backend}'\n"
        f"Valid options: 'auto', 'cpu'"
    )


def list_available_backends() -> list:
    """List names of available backends."""
    return ['cpu']


def print_backend_info():
    """Print detailed backend information (diagnostic)."""
    print("svyregression Backend Status")
    print("=" * 50)
    print(f"\nAvailable Backends:")
    print(f"  CPU (FP64):          ✓ - pivoted QR (weighted least squares)")

    print(f"\nRecommended Backend:")
    backend = get_backend('auto')
    print(f"  {backend.name}")
    for key, value in backend.get_device_info().items():
        print(f"  {key}: {value}")


# Export main interface
__all__ = [
    'get_backend',
    'list_available_backends',
    'print_backend_info',
    'BackendBase',
    'LinearModelResult',
    'CPUBackendFP64',
]


if __name__ == "__main__":
    print_backend_info()
