"""Tests for transform parameters, environment validation and conflict resolution."""

import pytest

from appsync_transformer.config import (
    DEFAULT_TRANSFORM_PARAMETERS,
    resolve_transform_parameters,
    validate_environment_name,
)
from appsync_transformer.conflict_resolution import (
    AutomergeStrategy,
    ConflictDetectionType,
    ConflictHandlerType,
    ConflictResolution,
    CustomConflictHandlerStrategy,
    OptimisticConcurrencyStrategy,
    convert_to_resolver_config,
    convert_to_sync_config,
)
from appsync_transformer.exceptions import ConfigValidationError


class TestTransformParameters:
    """Test cases for resolve_transform_parameters."""

    def test_defaults(self) -> None:
        """Test that no overrides keeps the defaults."""
        assert resolve_transform_parameters(None) is DEFAULT_TRANSFORM_PARAMETERS
        assert resolve_transform_parameters({}) is DEFAULT_TRANSFORM_PARAMETERS

    def test_override_keeps_other_defaults(self) -> None:
        """Test that an override only changes the named option."""
        parameters = resolve_transform_parameters({"sandbox_mode_enabled": True})

        assert parameters.sandbox_mode_enabled is True
        assert parameters.introspection_enabled is True
        assert parameters.suppress_api_key_generation is False

    def test_unknown_option(self) -> None:
        """Test that unknown options are rejected."""
        with pytest.raises(ConfigValidationError, match="Unknown transform parameters: shardCount"):
            resolve_transform_parameters({"shardCount": 2})

    def test_non_boolean_value(self) -> None:
        """Test that options must be booleans."""
        with pytest.raises(ConfigValidationError, match="must be a boolean"):
            resolve_transform_parameters({"xray_enabled": "yes"})


class TestEnvironmentName:
    """Test cases for validate_environment_name."""

    def test_missing_defaults_to_none(self) -> None:
        """Test that no tag resolves to NONE."""
        assert validate_environment_name(None) == "NONE"

    @pytest.mark.parametrize("env", ["dev", "prod", "staging1"])
    def test_valid(self, env: str) -> None:
        """Test tags of up to 8 characters."""
        assert validate_environment_name(env) == env

    def test_too_long(self) -> None:
        """Test that tags over 8 characters are rejected."""
        with pytest.raises(ConfigValidationError, match="length <= 8") as exc_info:
            validate_environment_name("staging12")

        assert exc_info.value.context == {"env": "staging12"}

    def test_empty(self) -> None:
        """Test that an empty tag is rejected."""
        with pytest.raises(ConfigValidationError):
            validate_environment_name("")


class TestConflictResolution:
    """Test cases for conflict-resolution translation."""

    def test_strategies(self) -> None:
        """Test each strategy's sync config."""
        assert convert_to_sync_config(AutomergeStrategy()).conflict_handler == ConflictHandlerType.AUTOMERGE
        assert convert_to_sync_config(OptimisticConcurrencyStrategy()).conflict_handler == (
            ConflictHandlerType.OPTIMISTIC_CONCURRENCY
        )
        custom = convert_to_sync_config(CustomConflictHandlerStrategy("arn:aws:lambda:us-east-1:1:function:h"))
        assert custom.conflict_handler == ConflictHandlerType.LAMBDA
        assert custom.conflict_detection == ConflictDetectionType.VERSION

    def test_to_cfn(self) -> None:
        """Test the CloudFormation SyncConfig shape."""
        config = convert_to_sync_config(CustomConflictHandlerStrategy("arn:handler"))

        assert config.to_cfn() == {
            "ConflictDetection": "VERSION",
            "ConflictHandler": "LAMBDA",
            "LambdaConflictHandlerConfig": {"LambdaConflictHandlerArn": "arn:handler"},
        }
        assert "LambdaConflictHandlerConfig" not in convert_to_sync_config(AutomergeStrategy()).to_cfn()

    def test_model_overrides_project(self) -> None:
        """Test that per-model strategies win over the project strategy."""
        resolver_config = convert_to_resolver_config(
            ConflictResolution(
                project=AutomergeStrategy(),
                models={"Todo": OptimisticConcurrencyStrategy()},
            )
        )

        assert resolver_config.for_model("Todo").conflict_handler == ConflictHandlerType.OPTIMISTIC_CONCURRENCY
        assert resolver_config.for_model("Note").conflict_handler == ConflictHandlerType.AUTOMERGE

    def test_no_project_strategy(self) -> None:
        """Test that models without a strategy get no sync config."""
        resolver_config = convert_to_resolver_config(ConflictResolution(models={"Todo": AutomergeStrategy()}))

        assert resolver_config.for_model("Note") is None

    def test_unexpected_strategy(self) -> None:
        """Test that unknown strategy objects are rejected."""
        with pytest.raises(ConfigValidationError, match="unexpected conflict resolution strategy"):
            convert_to_sync_config(object())

    def test_custom_handler_requires_arn(self) -> None:
        """Test that a custom handler needs a function ARN."""
        with pytest.raises(ConfigValidationError):
            convert_to_sync_config(CustomConflictHandlerStrategy(""))
