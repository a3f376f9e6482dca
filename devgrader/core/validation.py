"""Validation framework to prevent silent failures while loading grader inputs."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, List, Type, TypeVar

import yaml
from pydantic import BaseModel, ValidationError

T = TypeVar("T")


class ValidationFailure(ValueError):
    """Raised by strict validators when an input file or payload is invalid."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Validation failed: {'; '.join(self.errors)}")


class DeadlineExceeded(TimeoutError):
    """Raised by :func:`call_with_deadline` when the callable did not finish in time."""

    def __init__(self, operation: str, seconds: float):
        self.operation = operation
        self.seconds = seconds
        super().__init__(f"{operation} timed out after {seconds:.3f} seconds")


@dataclass
class ValidationResult:
    """Result of a validation check."""

    valid: bool
    errors: List[str]
    warnings: List[str]
    data: Any = None

    @property
    def has_warnings(self) -> bool:
        return len(self.warnings) > 0

    def raise_if_invalid(self) -> None:
        """Raise ValidationFailure if validation failed."""
        if not self.valid:
            raise ValidationFailure(self.errors)


class ValidationFramework:
    """Central validation framework for the grader."""

    def __init__(self, *, strict: bool = True, log_level: str = "INFO"):
        """Initialize validation framework.

        Args:
            strict: If True, raise exceptions on validation failure
            log_level: Logging level for validation messages
        """
        self.strict = strict
        self.logger = logging.getLogger(__name__)
        self.logger.setLevel(getattr(logging, log_level.upper()))

    # ============== File Operations ==============

    def validate_file_exists(self, path: Path | str) -> ValidationResult:
        """Validate that a file exists and is readable."""
        errors = []
        warnings = []
        path_obj = Path(path)

        if not path_obj.exists():
            errors.append(f"File does not exist: {path}")
        elif not path_obj.is_file():
            errors.append(f"Path is not a file: {path}")
        else:
            if not path_obj.stat().st_size:
                warnings.append(f"File is empty: {path}")
            try:
                with path_obj.open("r", encoding="utf-8"):
                    pass
            except PermissionError:
                errors.append(f"No read permission for file: {path}")
            except OSError as e:
                errors.append(f"Cannot read file {path}: {e}")

        result = ValidationResult(
            valid=len(errors) == 0,
            errors=errors,
            warnings=warnings,
            data=path_obj if not errors else None,
        )

        if not result.valid:
            self.logger.error("File validation failed: %s", result.errors)
        elif result.has_warnings:
            self.logger.warning("File validation warnings: %s", result.warnings)

        if self.strict and not result.valid:
            result.raise_if_invalid()

        return result

    def validate_yaml_file(self, path: Path | str) -> ValidationResult:
        """Validate and load a YAML file."""
        errors = []
        warnings = []
        data = None

        file_result = self.validate_file_exists(path)
        if not file_result.valid:
            return file_result

        path_obj = Path(path)
        try:
            content = path_obj.read_text(encoding="utf-8")
            if not content.strip():
                errors.append(f"YAML file is empty: {path}")
            else:
                data = yaml.safe_load(content)
                if data is None:
                    warnings.append(f"YAML file contains only null/empty data: {path}")
                    data = {}
                self.logger.debug("Loaded YAML from %s", path)
        except yaml.YAMLError as e:
            errors.append(f"Invalid YAML in {path}: {e}")
        except (OSError, UnicodeDecodeError) as e:
            errors.append(f"Error reading YAML file {path}: {e}")

        result = ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings, data=data)

        if not result.valid:
            self.logger.error("YAML validation failed: %s", result.errors)
        elif result.has_warnings:
            self.logger.warning("YAML validation warnings: %s", result.warnings)

        if self.strict and not result.valid:
            result.raise_if_invalid()

        return result

    # ============== Data Validation ==============

    def validate_pydantic_model(self, data: Dict[str, Any], model_class: Type[BaseModel]) -> ValidationResult:
        """Validate data against a Pydantic model."""
        errors = []
        warnings: List[str] = []
        validated_data = None

        if not isinstance(data, dict):
            errors.append(f"Expected mapping for {model_class.__name__}, got {type(data).__name__}")
        else:
            try:
                validated_data = model_class.model_validate(data)
            except ValidationError as e:
                for error in e.errors():
                    field = ".".join(str(loc) for loc in error["loc"])
                    errors.append(f"{field}: {error['msg']}")

        result = ValidationResult(valid=len(errors) == 0, errors=errors, warnings=warnings, data=validated_data)

        if not result.valid:
            self.logger.error("Pydantic validation failed: %s", result.errors)

        if self.strict and not result.valid:
            result.raise_if_invalid()

        return result


# ============== Deadlines ==============


def call_with_deadline(func: Callable[[], T], seconds: float, *, operation: str = "operation") -> T:
    """Run ``func`` on a daemon worker and wait at most ``seconds`` for it.

    Exceptions raised by ``func`` are re-raised in the caller. When the deadline
    passes the worker is abandoned (it keeps running until it returns on its own)
    and :class:`DeadlineExceeded` is raised. Abandoned workers never block
    interpreter shutdown.
    """

    outcome: Dict[str, Any] = {}
    finished = threading.Event()

    def _target() -> None:
        try:
            outcome["value"] = func()
        except BaseException as exc:  # noqa: BLE001 - re-raised in the caller thread
            outcome["error"] = exc
        finally:
            finished.set()

    worker = threading.Thread(target=_target, name=f"deadline:{operation}", daemon=True)
    started = time.monotonic()
    worker.start()
    if not finished.wait(timeout=max(seconds, 0.0)):
        raise DeadlineExceeded(operation, time.monotonic() - started)
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


# ============== Global Instance ==============

validation = ValidationFramework(strict=False)
strict_validation = ValidationFramework(strict=True)


__all__ = [
    "DeadlineExceeded",
    "ValidationFailure",
    "ValidationFramework",
    "ValidationResult",
    "call_with_deadline",
    "validation",
    "strict_validation",
]
