"""Base class for schema transformer plugins."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Tuple

from ..authorization_modes import AuthConfig
from ..config import TransformParameters
from ..conflict_resolution import ResolverConfig
from ..resource_graph import ResourceGraphBuilder
from ..schema_normalizer import NormalizedSchema


class TransformerPhase(IntEnum):
    """Fixed execution order; plugins see everything earlier phases declared."""

    AUTH = 0
    MODEL = 1
    RELATIONAL = 2
    CUSTOM = 3


@dataclass(frozen=True)
class TransformContext:
    """Read-only inputs shared by every plugin in a transform run."""

    schema: NormalizedSchema
    auth_config: AuthConfig
    transform_parameters: TransformParameters
    resolver_config: Optional[ResolverConfig] = None
    admin_roles: Tuple[str, ...] = ()
    identity_pool_id: Optional[str] = None


class TransformerPlugin(ABC):
    """A unit that contributes resources and resolvers to the resource graph.

    Plugins are invoked once per transform run, in phase order, and receive
    exclusive write access to the builder only for the duration of
    ``apply_to``. A plugin must not keep a reference to the builder after
    the call returns.
    """

    name: str = "transformer"
    phase: TransformerPhase = TransformerPhase.CUSTOM

    # SDL for directives this plugin owns; used when validating the schema.
    directive_definitions: str = ""

    @abstractmethod
    def apply_to(self, builder: ResourceGraphBuilder, context: TransformContext) -> None:
        """Contribute to the resource graph.

        Raises:
            Exception: Any failure; the orchestrator wraps it in a
                TransformError naming this plugin
        """
        pass

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, phase={self.phase.name})"
