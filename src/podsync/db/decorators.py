"""Database operation decorators for consistent error handling."""

from collections.abc import Awaitable, Callable
from functools import wraps
import inspect
import sys
from types import NoneType, UnionType
from typing import Any, Union, get_args, get_origin, get_type_hints

from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import DatabaseOperationError

_ID_TYPES = (str, int)


def _resolve_single_annotation(cls: type, attr_name: str) -> Any:
    """Resolve the annotation of ``attr_name`` on ``cls``.

    Raises:
        TypeError: If the annotation is missing or can't be resolved.
    """
    annotations = getattr(cls, "__annotations__", None)
    if not annotations:
        raise TypeError(f"Class {cls.__name__} has no annotations")

    raw_annotation = annotations.get(attr_name)
    if raw_annotation is None:
        raise TypeError(
            f"Class {cls.__name__} has no annotation for attribute '{attr_name}'"
        )
    if not isinstance(raw_annotation, str):
        return raw_annotation

    module = sys.modules.get(cls.__module__)
    if module is None:
        raise TypeError(f"Cannot find module {cls.__module__} for class {cls.__name__}")
    if '"' in raw_annotation or "'" in raw_annotation:
        raise TypeError(
            f"Forward reference '{raw_annotation}' in {cls.__name__}.{attr_name} cannot be resolved"
        )
    try:
        return eval(raw_annotation, module.__dict__)
    except (NameError, AttributeError, SyntaxError) as e:
        raise TypeError(
            f"Failed to resolve annotation '{raw_annotation}' in {cls.__name__}.{attr_name}: {e}"
        ) from e


def _unwrap_optional(annotation: Any) -> Any:
    if get_origin(annotation) in (Union, UnionType):
        non_none = [arg for arg in get_args(annotation) if arg is not NoneType]
        if len(non_none) == 1:
            return non_none[0]
    return annotation


def _validate_id_path(
    func_name: str,
    sig: inspect.Signature,
    resolved_hints: dict[str, Any],
    path: str,
) -> None:
    """Check at decoration time that a dotted path leads to an id attribute.

    Args:
        func_name: Name of the decorated function, for error messages.
        sig: Signature of the decorated function.
        resolved_hints: Resolved type hints of the decorated function.
        path: Dotted attribute path (e.g., ``"episode.podcast_id"``).

    Raises:
        TypeError: If the path is invalid, a parameter is missing, or the final
            attribute is not typed as ``str``/``int`` (optionally ``| None``).
    """
    path_parts = path.split(".")
    base_param_name = path_parts[0]

    if base_param_name not in sig.parameters:
        raise TypeError(
            f"Decorator on '{func_name}' specifies path '{path}', "
            f"but the function has no parameter named '{base_param_name}'."
        )

    current_type = resolved_hints.get(base_param_name)
    for i, attr_name in enumerate(path_parts[1:]):
        if current_type is None:
            raise TypeError(
                f"In path '{path}', part '{path_parts[i]}' has no type annotation on '{func_name}'."
            )
        current_type = _unwrap_optional(current_type)
        try:
            current_type = _resolve_single_annotation(current_type, attr_name)
        except TypeError as e:
            raise TypeError(
                f"In path '{path}', cannot resolve attribute '{attr_name}' on type "
                f"'{getattr(current_type, '__name__', current_type)}': {e}"
            ) from e

    if _unwrap_optional(current_type) not in _ID_TYPES:
        raise TypeError(
            f"The final attribute '{path_parts[-1]}' in path '{path}' must be "
            f"typed as 'str' or 'int' (optionally '| None'), but found "
            f"'{current_type}' in '{func_name}'."
        )


def _extract_value_from_path(bound_args: inspect.BoundArguments, path: str) -> Any:
    path_parts = path.split(".")
    current_value = bound_args.arguments.get(path_parts[0])
    for attr in path_parts[1:]:
        if current_value is None:
            break
        current_value = getattr(current_value, attr, None)
    return current_value


def _base_db_error_handler[**P, T](
    operation: str,
    id_paths: dict[str, str] | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Wrap a coroutine so SQLAlchemy errors become DatabaseOperationError.

    Args:
        operation: Description of the operation for error messages.
        id_paths: Maps the keyword on the raised error (e.g., ``"podcast_id"``)
            to where its value is found (e.g., ``"podcast.id"``).

    Returns:
        A decorator.
    """
    id_paths = id_paths or {}

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        try:
            sig = inspect.signature(func)
            resolved_hints = get_type_hints(func)
        except (TypeError, ValueError) as e:
            raise TypeError(
                f"Could not inspect the signature of {func.__name__}."
            ) from e

        for path in id_paths.values():
            _validate_id_path(func.__name__, sig, resolved_hints, path)

        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            extracted_ids: dict[str, Any] = {}
            if id_paths:
                try:
                    bound_args = sig.bind(*args, **kwargs)
                    bound_args.apply_defaults()
                    for id_name, path in id_paths.items():
                        extracted_ids[id_name] = _extract_value_from_path(
                            bound_args, path
                        )
                except (TypeError, ValueError, AttributeError) as e:
                    raise ValueError(
                        f"Failed to extract IDs {id_paths} in {func.__name__}"
                    ) from e

            try:
                return await func(*args, **kwargs)
            except SQLAlchemyError as e:
                raise DatabaseOperationError(
                    f"Failed to {operation}", **extracted_ids
                ) from e

        return wrapper

    return decorator


def handle_db_errors[**P, T](
    operation: str,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for database operations without specific context."""
    return _base_db_error_handler(operation=operation)


def handle_user_db_errors[**P, T](
    operation: str,
    user_id_from: str = "user_id",
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for database operations scoped to a user."""
    return _base_db_error_handler(
        operation=operation, id_paths={"user_id": user_id_from}
    )


def handle_podcast_db_errors[**P, T](
    operation: str,
    podcast_id_from: str = "podcast_id",
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for database operations involving a podcast."""
    return _base_db_error_handler(
        operation=operation, id_paths={"podcast_id": podcast_id_from}
    )


def handle_episode_db_errors[**P, T](
    operation: str,
    episode_id_from: str = "episode_id",
    podcast_id_from: str | None = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator for database operations involving an episode.

    Extracts episode_id (and podcast_id, when a path is given) for error
    reporting.
    """
    id_paths = {"episode_id": episode_id_from}
    if podcast_id_from is not None:
        id_paths["podcast_id"] = podcast_id_from
    return _base_db_error_handler(operation=operation, id_paths=id_paths)
