"""Executable CLI entrypoint for ``lumenflow_core``."""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING

from lumenflow_core.errors import ErrorCategory, LumenFlowError, format_error

if TYPE_CHECKING:
    from collections.abc import Sequence


class ExitCode(IntEnum):
    """Deterministic process exit-code contract."""

    SUCCESS = 0
    CHECK_FAILED = 1
    CONFIG_ERROR = 2
    REJECTED = 3
    INTERNAL_ERROR = 4


_CATEGORY_EXIT_CODES: dict[ErrorCategory, ExitCode] = {
    ErrorCategory.SCHEMA: ExitCode.CONFIG_ERROR,
    ErrorCategory.NOT_FOUND: ExitCode.REJECTED,
    ErrorCategory.STATE: ExitCode.REJECTED,
    ErrorCategory.POLICY: ExitCode.REJECTED,
    ErrorCategory.CONSISTENCY: ExitCode.CHECK_FAILED,
    ErrorCategory.IO: ExitCode.INTERNAL_ERROR,
}


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m lumenflow_core`` and the ``lumenflow`` script."""

    try:
        from lumenflow_core.ui.cli import run_cli

        return _normalize_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _normalize_exit_code(exc.code)
    except BaseException as exc:  # noqa: BLE001 - CLI boundary normalization.
        exit_code = _route_exception(exc)
        _emit_failure(exc, exit_code)
        return int(exit_code)


def _normalize_exit_code(raw_code: object) -> int:
    if isinstance(raw_code, int) and raw_code in {0, 1, 2, 3, 4}:
        return raw_code
    if raw_code is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw_code, str) and raw_code.strip():
        _write_stderr(raw_code.strip())
    return int(ExitCode.INTERNAL_ERROR)


def route_exception(exc: BaseException) -> ExitCode:
    return _route_exception(exc)


def _route_exception(exc: BaseException) -> ExitCode:
    config_error_types = _load_config_error_types()

    for item in _iter_exception_chain(exc):
        if isinstance(item, LumenFlowError):
            return _CATEGORY_EXIT_CODES[item.category]
        if isinstance(item, config_error_types):
            return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _load_config_error_types() -> tuple[type[BaseException], ...]:
    from lumenflow_core.config.loader import ConfigLoadError
    from lumenflow_core.config.schema import ConfigValidationError

    return (ConfigLoadError, ConfigValidationError)


def _iter_exception_chain(exc: BaseException) -> list[BaseException]:
    seen: set[int] = set()
    items: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None:
        marker = id(current)
        if marker in seen:
            break
        seen.add(marker)
        items.append(current)
        if current.__cause__ is not None:
            current = current.__cause__
            continue
        if current.__context__ is not None and not current.__suppress_context__:
            current = current.__context__
            continue
        break
    return items


def _emit_failure(exc: BaseException, exit_code: ExitCode) -> None:
    if exit_code is ExitCode.INTERNAL_ERROR and not isinstance(exc, LumenFlowError):
        traceback.print_exception(type(exc), exc, exc.__traceback__, file=sys.stderr)
        return
    _write_stderr(format_error(exc))


def _write_stderr(message: str) -> None:
    sys.stderr.write(message.rstrip("\n") + "\n")


__all__ = ["ExitCode", "cli_entrypoint", "route_exception"]
