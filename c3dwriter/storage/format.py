"""C3D file format constants.

A .c3d file is a sequence of 512-byte blocks:

    block 0            header (counts, rates, scale, data start block)
    blocks 1..k        parameter directory
                         4-byte marker, then per group: group record +
                         parameter records, then a 5-byte sentinel group,
                         zero padding to the block boundary
    blocks dataStart.. frame records (points, then analog samples)

Block numbers on disk are 1-based, so the data section begins at byte
(data_start - 1) * BLOCK_SIZE.
"""

# Block geometry
BLOCK_SIZE = 512
HEADER_SIZE = BLOCK_SIZE

# Header magic (byte 1 of the header and of the parameter marker)
C3D_KEY = 0x50

# Block where the parameter directory starts (1-based)
PARAMETER_BLOCK = 2

# Processor type stored in the parameter marker: 84 = Intel (little-endian)
PROCESSOR_INTEL = 0x54

# Parameter marker; byte 2 is patched with the directory block count
PARAMETER_MARKER = bytes([0x01, C3D_KEY, 0x02, PROCESSOR_INTEL])
MARKER_BLOCK_COUNT_OFFSET = 2

# The block count is a single byte, so the directory spans at most 255 blocks
MAX_PARAMETER_BLOCKS = 255

# Size of the terminating group: name length, id, next offset (2), desc length
SENTINEL_SIZE = 5

# Parameter data type codes
TYPE_CHAR = -1
TYPE_BYTE = 1
TYPE_INT16 = 2
TYPE_FLOAT = 4

# Dimensions are single unsigned bytes
MAX_DIMENSION = 255

# Words per point in a frame record: x, y, z, residual
POINT_WORDS = 4

# Default session settings
DEFAULT_POINT_COUNT = 21
DEFAULT_FRAME_RATE = 30.0
DEFAULT_SCALE_FACTOR = 1.0

# Scratch file naming for the event rewrite
SCRATCH_PREFIX = "."
SCRATCH_SUFFIX = ".tmp"

# File extension
FILE_EXTENSION = ".c3d"
