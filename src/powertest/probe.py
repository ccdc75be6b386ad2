"""Debug probe access for flashing and resetting the target.

Built on ``pyocd``, which is imported lazily so the rest of powertest works
without it installed. Probe selection tries every connected probe in turn:
a probe that fails to open or attach to the requested chip is logged and
skipped, and only running out of candidates is an error.

Example:
    ::

        target = attach_target("nrf52840")
        target.flash(Path("firmware.elf"))
        target.reset_and_halt()
        ...
        target.reset()
        target.close()
"""

# pylint: disable=broad-exception-caught  # pyocd raises many unrelated exception types

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from powertest.errors import ProbeError

logger = logging.getLogger(__name__)

C = TypeVar("C")
T = TypeVar("T")


def first_success(
    candidates: Iterable[C],
    attempt: Callable[[C], T],
    *,
    describe: Callable[[C], str] = str,
    error: str = "No candidate succeeded",
) -> T:
    """Return the result of the first candidate whose attempt succeeds.

    Failing candidates are logged and skipped.

    Args:
        candidates: Candidates in preference order.
        attempt: Called with each candidate until one returns.
        describe: Renders a candidate for log and error messages.
        error: Message prefix for the exhausted case.

    Returns:
        The first successful attempt's result.

    Raises:
        ProbeError: If there were no candidates or every attempt failed.
    """
    failures: list[str] = []
    for candidate in candidates:
        name = describe(candidate)
        try:
            return attempt(candidate)
        except Exception as exc:
            logger.warning("Skipping %s: %s", name, exc)
            failures.append(f"{name}: {exc}")
    if not failures:
        raise ProbeError(f"{error}: no debug probes found")
    raise ProbeError(f"{error}: " + "; ".join(failures))


def _import_pyocd() -> Any:
    """Import and return the ``pyocd`` package."""
    try:
        import pyocd  # type: ignore[import-not-found]  # pylint: disable=import-outside-toplevel
        import pyocd.core.helpers  # type: ignore[import-not-found]  # pylint: disable=import-outside-toplevel
        import pyocd.core.session  # type: ignore[import-not-found]  # pylint: disable=import-outside-toplevel
        import pyocd.flash.file_programmer  # type: ignore[import-not-found]  # pylint: disable=import-outside-toplevel
    except ImportError as exc:
        raise ProbeError(
            "pyocd library is not installed. Install with: pip install pyocd"
        ) from exc
    return pyocd


def _describe_probe(probe: Any) -> str:
    return f"{probe.description} ({probe.unique_id})"


class DebugTarget:
    """An open debug session attached to the target chip.

    Args:
        session: An opened ``pyocd.core.session.Session``.
        programmer_factory: Builds a flash programmer for the session,
            ``pyocd.flash.file_programmer.FileProgrammer`` by default.
    """

    def __init__(self, session: Any, programmer_factory: Callable[..., Any] | None = None) -> None:
        self._session = session
        self._programmer_factory = programmer_factory

    @property
    def unique_id(self) -> str:
        """Unique ID of the probe behind this session."""
        return str(self._session.probe.unique_id)

    def flash(self, path: str | Path) -> None:
        """Erase the chip and program an ELF image.

        Raises:
            ProbeError: If programming fails.
        """
        factory = self._programmer_factory
        if factory is None:
            factory = _import_pyocd().flash.file_programmer.FileProgrammer
        logger.info("Flashing %s", path)
        try:
            factory(self._session, chip_erase="chip").program(str(path))
        except Exception as exc:
            raise ProbeError(f"Failed to flash {path}: {exc}") from exc

    def reset_and_halt(self) -> None:
        """Reset the core and halt it before the first instruction."""
        try:
            self._session.target.reset_and_halt()
        except Exception as exc:
            raise ProbeError(f"Failed to reset and halt target: {exc}") from exc

    def reset(self) -> None:
        """Reset the core and let it run."""
        try:
            self._session.target.reset()
        except Exception as exc:
            raise ProbeError(f"Failed to reset target: {exc}") from exc

    def close(self) -> None:
        """Close the debug session. Safe to call multiple times."""
        if self._session is None:
            return
        try:
            self._session.close()
        except Exception:
            logger.warning("Error closing debug session", exc_info=True)
        self._session = None


def open_session(probe: Any, chip: str) -> DebugTarget:
    """Open a session on one probe and attach to the chip.

    Raises:
        Exception: Whatever pyocd raised; the session is closed first.
    """
    pyocd = _import_pyocd()
    session = pyocd.core.session.Session(probe, auto_open=False, target_override=chip)
    try:
        session.open()
    except Exception:
        try:
            session.close()
        except Exception:
            logger.debug("Error closing failed session", exc_info=True)
        raise
    logger.info("Attached to %s via %s", chip, _describe_probe(probe))
    return DebugTarget(session)


def list_probes(unique_id: str | None = None) -> list[Any]:
    """Enumerate connected debug probes, optionally filtered by unique ID."""
    pyocd = _import_pyocd()
    try:
        return list(
            pyocd.core.helpers.ConnectHelper.get_all_connected_probes(
                blocking=False, unique_id=unique_id, print_wait_message=False
            )
        )
    except Exception as exc:
        raise ProbeError(f"Failed to enumerate debug probes: {exc}") from exc


def attach_target(
    chip: str,
    *,
    unique_id: str | None = None,
    probes: Iterable[Any] | None = None,
    opener: Callable[[Any, str], DebugTarget] = open_session,
) -> DebugTarget:
    """Attach to a chip through the first probe that works.

    Args:
        chip: Target chip identifier understood by pyocd (e.g. ``nrf52840``).
        unique_id: Only consider probes with this unique ID.
        probes: Candidate probes; enumerated with :func:`list_probes` if None.
        opener: Opens a session on one probe.

    Returns:
        The attached target.

    Raises:
        ProbeError: If no probe could attach.
    """
    if probes is None:
        probes = list_probes(unique_id)
    return first_success(
        probes,
        lambda probe: opener(probe, chip),
        describe=_describe_probe,
        error=f"No debug probe could attach to {chip}",
    )
