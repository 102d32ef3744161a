"""Serializes the parameter directory and fixes where frame data begins."""

from __future__ import annotations

import logging
from typing import BinaryIO

from c3dwriter.errors import ParameterTypeError
from c3dwriter.storage.format import (
    BLOCK_SIZE,
    MARKER_BLOCK_COUNT_OFFSET,
    MAX_PARAMETER_BLOCKS,
    PARAMETER_MARKER,
    SENTINEL_SIZE,
)
from c3dwriter.storage.parameters import (
    Parameter,
    ParameterStore,
    ParameterValue,
    ValueKind,
    sentinel_bytes,
)

logger = logging.getLogger(__name__)

DATA_START_PATH = "POINT:DATA_START"


def directory_size(store: ParameterStore) -> int:
    """Bytes taken by the marker, all groups and parameters and the sentinel."""
    size = len(PARAMETER_MARKER) + SENTINEL_SIZE
    for grp in store.groups:
        size += len(grp.to_bytes())
        size += sum(len(p.to_bytes()) for p in grp.parameters)
    return size


def data_start_block(end_of_parameters: int) -> int:
    """First 1-based block after a directory whose last parameter ends at
    ``end_of_parameters`` (the sentinel still has to follow)."""
    return (end_of_parameters + SENTINEL_SIZE) // BLOCK_SIZE + 2


def patch_parameter(stream: BinaryIO, parameter: Parameter) -> None:
    """Rewrite one parameter record in place, leaving the cursor where it was."""
    if parameter.offset is None:
        return
    position = stream.tell()
    stream.seek(parameter.offset)
    stream.write(parameter.to_bytes())
    stream.seek(position)
    logger.debug(f"Patched parameter {parameter.name} at offset {parameter.offset}")


def write_directory(stream: BinaryIO, store: ParameterStore) -> int:
    """Write the parameter directory at the stream's current position.

    Records every parameter's file offset, patches POINT:DATA_START and the
    marker's block count once the directory size is known, and pads the
    stream up to the first data block.

    Returns:
        The 1-based block number where frame data starts.

    Raises:
        ParameterTypeError: The directory would need more blocks than the
            marker can count. Nothing is written in that case.
    """
    marker_position = stream.tell()
    end_of_parameters = marker_position + directory_size(store) - SENTINEL_SIZE
    blocks = data_start_block(end_of_parameters) - 2
    if blocks > MAX_PARAMETER_BLOCKS:
        raise ParameterTypeError(
            f"Parameter directory needs {blocks} blocks of {BLOCK_SIZE} bytes; "
            f"a C3D file holds at most {MAX_PARAMETER_BLOCKS}"
        )

    stream.write(PARAMETER_MARKER)

    for grp in store.groups:
        stream.write(grp.to_bytes())
        for p in grp.parameters:
            p.offset = stream.tell()
            stream.write(p.to_bytes())

    data_start = data_start_block(stream.tell())

    data_start_param = store.find(DATA_START_PATH)
    if data_start_param is not None:
        data_start_param.value = ParameterValue.of(data_start, ValueKind.INT16)
        patch_parameter(stream, data_start_param)

    position = stream.tell()
    stream.seek(marker_position + MARKER_BLOCK_COUNT_OFFSET)
    stream.write(bytes([data_start - 2]))
    stream.seek(position)

    stream.write(sentinel_bytes())
    stream.write(b"\x00" * ((data_start - 1) * BLOCK_SIZE - stream.tell()))

    logger.debug(
        f"Parameter directory: {len(store.groups)} groups, "
        f"{position - marker_position} bytes, data starts at block {data_start}"
    )
    return data_start
