from typing import List

from .auth_transformer import AuthTransformer
from .base import TransformContext, TransformerPhase, TransformerPlugin
from .function_transformer import FunctionTransformer
from .model_transformer import ModelTransformer


def default_transformers() -> List[TransformerPlugin]:
    """Fresh instances of the built-in transformers, in phase order."""
    return [AuthTransformer(), ModelTransformer(), FunctionTransformer()]


__all__ = [
    "AuthTransformer",
    "FunctionTransformer",
    "ModelTransformer",
    "TransformContext",
    "TransformerPhase",
    "TransformerPlugin",
    "default_transformers",
]
