"""
Backup File Format Constants and Type Tables.

Defines the header layout, array marker syntax, canonical type names and the
Logix data type mapping used by the L5X tag tree adapter.
"""

# Header record, in column order.  Every backup file starts with it.
HEADER_FIELDS = ['Index', 'RelativePath', 'Value', 'DataType']

# Fields per record.
RECORD_WIDTH = len(HEADER_FIELDS)

# Array marker rows carry "ARRAY:<rows>" or "ARRAY:<rows>x<columns>".
ARRAY_MARKER_PREFIX = 'ARRAY:'
ARRAY_DIMENSION_SEPARATOR = 'x'

# Array data rows index their element as "i" (rank 1) or "i.j" (rank 2).
ARRAY_INDEX_SEPARATOR = '.'

# Host children whose path contains this carry array dimension metadata,
# not values.
ARRAY_DIMENSIONS_MARKER = 'ArrayDimensions'

DEFAULT_FIELD_DELIMITER = ','
DEFAULT_QUOTE_CHAR = '"'
DEFAULT_TIMEOUT_MS = 30000
FILE_ENCODING = 'utf-8'

# Restore splits array indexes on '.', so it cannot be the field delimiter.
FORBIDDEN_RESTORE_DELIMITERS = {'.'}

# Names written by older backups (OPC UA built-in type names) and accepted
# on restore in addition to the canonical names.
TYPE_NAME_ALIASES = {
    'SByte': 'Int8',
    'Byte': 'UInt8',
    'Boolean': 'Bool',
    'Float': 'Float32',
    'Double': 'Float64',
    'DateTime': 'Timestamp',
    'UtcTime': 'Timestamp',
}

# Integer ranges by canonical type name: (min, max).
INTEGER_RANGES = {
    'Int8':   (-2**7,  2**7 - 1),
    'Int16':  (-2**15, 2**15 - 1),
    'Int32':  (-2**31, 2**31 - 1),
    'Int64':  (-2**63, 2**63 - 1),
    'UInt8':  (0, 2**8 - 1),
    'UInt16': (0, 2**16 - 1),
    'UInt32': (0, 2**32 - 1),
    'UInt64': (0, 2**64 - 1),
}

# Significant digits needed to round-trip IEEE-754 single / double precision.
FLOAT_SIGNIFICANT_DIGITS = {
    'Float32': 9,
    'Float64': 17,
}

# Special float spellings, written the way the host runtime writes them.
FLOAT_NAN = 'NaN'
FLOAT_POSITIVE_INFINITY = 'Infinity'
FLOAT_NEGATIVE_INFINITY = '-Infinity'

# Logix atomic data types -> canonical type names.
LOGIX_TYPE_MAP = {
    'SINT':  'Int8',
    'INT':   'Int16',
    'DINT':  'Int32',
    'LINT':  'Int64',
    'USINT': 'UInt8',
    'UINT':  'UInt16',
    'UDINT': 'UInt32',
    'ULINT': 'UInt64',
    'BOOL':  'Bool',
    'REAL':  'Float32',
    'LREAL': 'Float64',
}

# Radix written on Decorated values of each Logix atomic type.
LOGIX_DEFAULT_RADIX = {
    'SINT': 'Decimal', 'INT': 'Decimal', 'DINT': 'Decimal', 'LINT': 'Decimal',
    'USINT': 'Decimal', 'UINT': 'Decimal', 'UDINT': 'Decimal',
    'ULINT': 'Decimal', 'BOOL': 'Decimal',
    'REAL': 'Float', 'LREAL': 'Float',
}

# Root path addressing controller-scoped tags in an L5X tag tree.
CONTROLLER_ROOT = 'Controller'
# Prefix addressing program-scoped tags, e.g. "Program:MainProgram".
PROGRAM_ROOT_PREFIX = 'Program:'
