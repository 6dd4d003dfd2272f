"""Operator registry mapping operator names to kernel constructors."""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, Literal

from .kernel import KernelConfig, PatchMatchKernel

logger = logging.getLogger(__name__)

KernelFactory = Callable[[KernelConfig], Any]


@dataclass(frozen=True)
class OpSpec:
    """Signature of a registered operator.

    Attributes:
        variadic_inputs: Whether the operator accepts any number of input columns.
        outputs: Names of the output columns.
        device_type: Device type the kernel runs on.
        num_devices: Number of devices the kernel needs.
    """

    variadic_inputs: bool = False
    outputs: tuple[str, ...] = ()
    device_type: Literal["cpu", "gpu"] = "gpu"
    num_devices: int = 1


@dataclass
class KernelRegistry:
    """Name-to-constructor registry owned by the embedding application."""

    _entries: dict[str, tuple[OpSpec, KernelFactory]] = field(default_factory=dict)

    def register(
        self, name: str, spec: OpSpec
    ) -> Callable[[KernelFactory], KernelFactory]:
        """Decorator registering a kernel constructor under ``name``.

        Raises:
            ValueError: If ``name`` is already registered.
        """

        def decorator(factory: KernelFactory) -> KernelFactory:
            if name in self._entries:
                raise ValueError(f"Operator already registered: {name!r}")
            self._entries[name] = (spec, factory)
            logger.debug("Registered operator %s", name)
            return factory

        return decorator

    def spec(self, name: str) -> OpSpec:
        """Signature of a registered operator.

        Raises:
            KeyError: If ``name`` is not registered.
        """
        return self._lookup(name)[0]

    def create(self, name: str, config: KernelConfig) -> Any:
        """Construct a kernel instance for operator ``name``.

        Raises:
            KeyError: If ``name`` is not registered.
        """
        return self._lookup(name)[1](config)

    def names(self) -> list[str]:
        """Registered operator names, sorted."""
        return sorted(self._entries)

    def _lookup(self, name: str) -> tuple[OpSpec, KernelFactory]:
        try:
            return self._entries[name]
        except KeyError:
            raise KeyError(
                f"Unknown operator: {name!r}. Registered: {self.names()}"
            ) from None


def register_builtin_kernels(registry: KernelRegistry) -> KernelRegistry:
    """Register the kernels shipped with this package.

    Args:
        registry: Registry to populate.

    Returns:
        The same registry, for chaining.
    """
    registry.register(
        "PatchMatch",
        OpSpec(variadic_inputs=True, outputs=("points",), device_type="gpu"),
    )(PatchMatchKernel)
    return registry
