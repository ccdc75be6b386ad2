"""Expected test report count lookup.

Test firmware built with defmt-test exports the number of tests it runs in a
data symbol. This module reads that symbol's stored value out of the ELF file
without executing anything, honouring the binary's own byte order and
address width.

Example:
    >>> count = read_test_count(Path("target/thumbv7em-none-eabihf/debug/power"))
"""

from __future__ import annotations

import io
import logging
from pathlib import Path
from typing import Any

from elftools.common.exceptions import ELFError
from elftools.elf.elffile import ELFFile
from elftools.elf.sections import SymbolTableSection

from powertest.errors import MalformedSymbolError, SymbolNotFoundError, TestCountError

logger = logging.getLogger(__name__)

TEST_COUNT_SYMBOLS: tuple[str, ...] = ("DEFMT_TEST_COUNT", "__DEFMT_TEST_COUNT")
"""Accepted symbol names, preferred first. The second is the older spelling."""

_ELF_MAGIC = b"\x7fELF"


def _find_symbol(elf: ELFFile) -> Any:
    """Return the first test count symbol found, preferring the current name."""
    symtabs = [s for s in elf.iter_sections() if isinstance(s, SymbolTableSection)]
    for name in TEST_COUNT_SYMBOLS:
        for symtab in symtabs:
            matches = symtab.get_symbol_by_name(name)
            if matches:
                logger.debug("Found test count symbol %s in %s", name, symtab.name)
                return matches[0]
    raise SymbolNotFoundError(
        f"symbol {' or '.join(TEST_COUNT_SYMBOLS)} not found in binary"
    )


def _symbol_bytes(elf: ELFFile, symbol: Any) -> bytes:
    """Read the bytes backing a symbol from its containing section."""
    shndx = symbol["st_shndx"]
    if not isinstance(shndx, int):
        raise MalformedSymbolError(f"symbol {symbol.name} has no data section ({shndx})")

    section = elf.get_section(shndx)
    address = symbol["st_value"]
    size = symbol["st_size"]
    offset = address - section["sh_addr"]
    if offset < 0 or offset + size > section["sh_size"]:
        raise MalformedSymbolError(
            f"symbol {symbol.name} at {address:#x} (+{size}) lies outside section {section.name}"
        )

    if section["sh_type"] == "SHT_NOBITS":
        # Zero-initialized data has no file contents
        return bytes(size)
    return bytes(section.data()[offset : offset + size])


def resolve_test_count(data: bytes) -> int:
    """Resolve the expected number of test reports from ELF file contents.

    Identical input always yields an identical result.

    Args:
        data: Raw bytes of the compiled target binary.

    Returns:
        The symbol's value as an unsigned integer.

    Raises:
        SymbolNotFoundError: If neither test count symbol is defined.
        MalformedSymbolError: If the data is not a readable ELF file or the
            symbol's size does not match the binary's 32/64-bit word size.
    """
    if not data.startswith(_ELF_MAGIC):
        raise MalformedSymbolError("binary is not an ELF file")

    try:
        elf = ELFFile(io.BytesIO(data))
        symbol = _find_symbol(elf)
        raw = _symbol_bytes(elf, symbol)
    except ELFError as exc:
        raise MalformedSymbolError(f"cannot parse binary: {exc}") from exc

    width = elf.elfclass // 8
    if len(raw) != width:
        raise MalformedSymbolError(
            f"symbol {symbol.name} is {len(raw)} bytes, expected {width} "
            f"for a {elf.elfclass}-bit binary"
        )

    byteorder = "little" if elf.little_endian else "big"
    return int.from_bytes(raw, byteorder, signed=False)


def read_test_count(path: str | Path) -> int:
    """Read the expected number of test reports from an ELF file on disk.

    Args:
        path: Path to the target binary.

    Returns:
        The resolved test count.

    Raises:
        TestCountError: If the file cannot be read, or any error raised by
            :func:`resolve_test_count`.
    """
    path = Path(path)
    try:
        data = path.read_bytes()
    except OSError as exc:
        raise TestCountError(f"cannot read binary {path}: {exc}") from exc
    count = resolve_test_count(data)
    logger.info("Binary %s reports %d tests", path.name, count)
    return count
