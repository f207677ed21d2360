"""
Record Decoder - Turns raw leaf records into column values

Record layout:
    [last fixed id:1][last variable id:1][variable table offset:2]
    [fixed column data, in column id order]
    [fixed null bitmap: ceil(last fixed id / 8) bytes, bit set = NULL]
    [variable offset table: u16 per variable id 128..last, 0x8000 = NULL]
    [variable column data]
    [tagged table: (u16 column id, u16 offset) * n][tagged data]   (optional)
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from ..catalog.schema import Column, TableSchema
from ..constants import (RECORD_HEADER_SIZE, FIRST_VARIABLE_COLUMN_ID, VARIABLE_NULL_FLAG,
                         VARIABLE_OFFSET_MASK, TAGGED_OFFSET_MASK, TAGGED_LARGE_OFFSET_MASK,
                         TAGGED_HAS_FLAGS, TAGGED_FLAG_COMPRESSED, TAGGED_FLAG_LONG_VALUE,
                         TAGGED_FLAG_MULTI_VALUE, TAGGED_FLAG_MULTI_VALUE_SIZE,
                         MULTI_VALUE_OFFSET_MASK)
from ..exceptions import DanglingLongValue, InvalidValue, TruncatedRecord
from ..storage.index.long_value import LongValueResolver
from ..types.compression import decompress
from ..types.value import LongValueRef, convert, empty_value

logger = logging.getLogger(__name__)


@dataclass
class Record:
    """One decoded table record: column id -> value (None for absent fixed columns)"""
    table: str
    values: Dict[int, Any] = field(default_factory=dict)
    key: bytes = b''

    def get(self, column_id: int, default: Any = None) -> Any:
        return self.values.get(column_id, default)

    def __contains__(self, column_id: int) -> bool:
        return column_id in self.values

    def by_name(self, schema: TableSchema) -> Dict[str, Any]:
        """Re-key values by column name, dropping columns unknown to the schema"""
        named = {}
        for column_id, value in self.values.items():
            column = schema.column_by_id(column_id)
            if column is not None:
                named[column.name] = value
        return named

    def long_value_refs(self) -> List[int]:
        """Column ids whose value is (or contains) an unresolved long value"""
        refs = []
        for column_id, value in self.values.items():
            if isinstance(value, LongValueRef) or (
                    isinstance(value, list) and any(isinstance(v, LongValueRef) for v in value)):
                refs.append(column_id)
        return refs


@dataclass(frozen=True)
class CompressedLongValueRef(LongValueRef):
    """Long value whose reassembled bytes are still compressed"""
    pass


class RecordDecoder:
    """Decodes records of any non-catalog table given its schema"""

    def __init__(self, large_tagged_offsets: bool = False):
        """
        Args:
            large_tagged_offsets: Stores with revision 0x11+ and 16 KiB+ pages use
                15-bit tagged offsets and always prefix tagged values with a flags byte
        """
        self.large_tagged_offsets = large_tagged_offsets

    def decode(self, schema: TableSchema, raw: bytes, key: bytes = b'') -> Record:
        """
        Decode a record

        Args:
            schema: Schema of the record's table
            raw: Leaf record bytes
            key: Record key, carried through for ordering

        Returns:
            Record with typed values; long values stay as LongValueRef

        Raises:
            TruncatedRecord: If any offset or width points past the buffer
            InvalidValue: If column bytes do not fit the declared type
        """
        if len(raw) < RECORD_HEADER_SIZE:
            raise TruncatedRecord(f"{schema.name}: record of {len(raw)} bytes has no header")

        last_fixed_id, last_variable_id, variable_offset = struct.unpack_from('<BBH', raw, 0)
        if variable_offset > len(raw) or variable_offset < RECORD_HEADER_SIZE:
            raise TruncatedRecord(f"{schema.name}: variable table offset {variable_offset} "
                                  f"outside record of {len(raw)} bytes")

        record = Record(schema.name, key=key)
        self._decode_fixed(schema, raw, last_fixed_id, variable_offset, record)
        tagged_start = self._decode_variable(schema, raw, last_variable_id, variable_offset, record)
        if tagged_start < len(raw):
            self._decode_tagged(schema, raw[tagged_start:], record)
        return record

    # ----------------------------------------------------------------
    # Fixed columns
    # ----------------------------------------------------------------

    def _decode_fixed(self, schema: TableSchema, raw: bytes, last_fixed_id: int,
                      variable_offset: int, record: Record) -> None:
        bitmap_size = (last_fixed_id + 7) // 8
        bitmap_start = variable_offset - bitmap_size
        position = RECORD_HEADER_SIZE

        for column in schema.fixed_columns:
            if column.column_id > last_fixed_id:
                # Column added to the schema after this record was written
                record.values[column.column_id] = None
                continue

            width = column.width
            if width <= 0:
                raise InvalidValue(f"{schema.name}: fixed column '{column.name}' has no width")
            if position + width > bitmap_start:
                raise TruncatedRecord(f"{schema.name}: fixed column '{column.name}' ends at "
                                      f"{position + width}, fixed area ends at {bitmap_start}")

            index = column.column_id - 1
            is_null = raw[bitmap_start + index // 8] & (1 << (index % 8))
            if is_null:
                record.values[column.column_id] = None
            else:
                record.values[column.column_id] = convert(column, raw[position:position + width])
            position += width

    # ----------------------------------------------------------------
    # Variable columns
    # ----------------------------------------------------------------

    def _decode_variable(self, schema: TableSchema, raw: bytes, last_variable_id: int,
                         variable_offset: int, record: Record) -> int:
        """Decode variable columns, returning the offset where tagged data starts"""
        count = max(last_variable_id - FIRST_VARIABLE_COLUMN_ID + 1, 0)
        data_start = variable_offset + 2 * count
        if data_start > len(raw):
            raise TruncatedRecord(f"{schema.name}: variable offset table of {count} entries "
                                  f"ends past the record")

        columns = {c.column_id: c for c in schema.variable_columns}
        previous_end = 0
        for index in range(count):
            column_id = FIRST_VARIABLE_COLUMN_ID + index
            word = struct.unpack_from('<H', raw, variable_offset + 2 * index)[0]
            end = word & VARIABLE_OFFSET_MASK

            if word & VARIABLE_NULL_FLAG:
                previous_end = max(previous_end, end)
                continue
            if end < previous_end:
                raise TruncatedRecord(f"{schema.name}: variable column {column_id} ends at "
                                      f"{end}, before its start {previous_end}")
            if data_start + end > len(raw):
                raise TruncatedRecord(f"{schema.name}: variable column {column_id} ends at "
                                      f"{data_start + end}, record has {len(raw)} bytes")

            start = previous_end
            previous_end = end
            if end == start:
                continue
            column = columns.get(column_id)
            if column is None:
                logger.debug(f"{schema.name}: variable column {column_id} not in schema")
                continue
            record.values[column_id] = convert(column, raw[data_start + start:data_start + end])

        return data_start + previous_end

    # ----------------------------------------------------------------
    # Tagged columns
    # ----------------------------------------------------------------

    def _tagged_entries(self, schema: TableSchema, area: bytes) -> List[Tuple[int, int, int, bool]]:
        """Parse the tagged table into (column id, start, end, has flags byte)"""
        if len(area) < 4:
            raise TruncatedRecord(f"{schema.name}: tagged area of {len(area)} bytes")

        mask = TAGGED_LARGE_OFFSET_MASK if self.large_tagged_offsets else TAGGED_OFFSET_MASK
        first_offset = struct.unpack_from('<H', area, 2)[0] & mask
        count = first_offset // 4
        if count == 0 or count * 4 > len(area):
            raise TruncatedRecord(f"{schema.name}: tagged table of {count} entries does not "
                                  f"fit in {len(area)} bytes")

        raw_entries = [struct.unpack_from('<HH', area, 4 * i) for i in range(count)]
        entries = []
        for i, (column_id, word) in enumerate(raw_entries):
            start = word & mask
            end = (raw_entries[i + 1][1] & mask) if i + 1 < count else len(area)
            if start < count * 4 or start > end or end > len(area):
                raise TruncatedRecord(f"{schema.name}: tagged column {column_id} spans "
                                      f"[{start}, {end}) in a {len(area)} byte area")
            has_flags = self.large_tagged_offsets or bool(word & TAGGED_HAS_FLAGS)
            entries.append((column_id, start, end, has_flags))
        return entries

    def _decode_tagged(self, schema: TableSchema, area: bytes, record: Record) -> None:
        for column_id, start, end, has_flags in self._tagged_entries(schema, area):
            value = area[start:end]
            flags = 0
            if has_flags and value:
                flags = value[0]
                value = value[1:]

            column = schema.tagged_columns.get(column_id)
            if column is None:
                logger.debug(f"{schema.name}: tagged column {column_id} not in schema")
                continue

            if flags & TAGGED_FLAG_LONG_VALUE:
                ref = LongValueRef.from_bytes(value)
                if flags & TAGGED_FLAG_COMPRESSED:
                    ref = CompressedLongValueRef(ref.lid, ref.width)
                record.values[column_id] = ref
            elif flags & TAGGED_FLAG_MULTI_VALUE_SIZE:
                record.values[column_id] = self._split_sized_pair(schema, column, value)
            elif flags & TAGGED_FLAG_MULTI_VALUE:
                record.values[column_id] = self._split_multi_value(schema, column, value)
            else:
                if flags & TAGGED_FLAG_COMPRESSED:
                    value = decompress(value)
                record.values[column_id] = convert(column, value)

    def _split_sized_pair(self, schema: TableSchema, column: Column, value: bytes) -> List[Any]:
        """Two values: [size of first:1][first][second]"""
        if not value:
            raise TruncatedRecord(f"{schema.name}: empty sized multi-value '{column.name}'")
        first_size = value[0]
        if 1 + first_size > len(value):
            raise TruncatedRecord(f"{schema.name}: multi-value '{column.name}' first item "
                                  f"of {first_size} bytes exceeds {len(value) - 1}")
        return [convert(column, value[1:1 + first_size]),
                convert(column, value[1 + first_size:])]

    def _split_multi_value(self, schema: TableSchema, column: Column, value: bytes) -> List[Any]:
        """Multi-value: [u16 offset * n][items]; offset bit 0x8000 marks a long value"""
        if len(value) < 2:
            raise TruncatedRecord(f"{schema.name}: multi-value '{column.name}' has no offsets")
        count = (struct.unpack_from('<H', value, 0)[0] & MULTI_VALUE_OFFSET_MASK) // 2
        if count == 0 or 2 * count > len(value):
            raise TruncatedRecord(f"{schema.name}: multi-value '{column.name}' offset table "
                                  f"of {count} entries does not fit")

        words = struct.unpack_from(f'<{count}H', value, 0)
        items = []
        for i, word in enumerate(words):
            start = word & MULTI_VALUE_OFFSET_MASK
            end = (words[i + 1] & MULTI_VALUE_OFFSET_MASK) if i + 1 < count else len(value)
            if start > end or end > len(value):
                raise TruncatedRecord(f"{schema.name}: multi-value '{column.name}' item {i} "
                                      f"spans [{start}, {end})")
            item = value[start:end]
            if word & 0x8000:
                items.append(LongValueRef.from_bytes(item))
            else:
                items.append(convert(column, item))
        return items

    # ----------------------------------------------------------------
    # Long values
    # ----------------------------------------------------------------

    def resolve_long_values(self, schema: TableSchema, record: Record,
                            resolver: Optional[LongValueResolver],
                            only: Optional[Set[int]] = None) -> Record:
        """
        Replace LongValueRef values with converted data

        A reference that cannot be resolved is logged and surfaced as an
        empty value; the rest of the record is kept. With only, references
        in other columns are left in place.
        """
        for column_id in record.long_value_refs():
            if only is not None and column_id not in only:
                continue
            column = schema.tagged_columns[column_id]
            value = record.values[column_id]
            if isinstance(value, list):
                record.values[column_id] = [
                    self._resolve_one(schema, column, item, resolver)
                    if isinstance(item, LongValueRef) else item
                    for item in value
                ]
            else:
                record.values[column_id] = self._resolve_one(schema, column, value, resolver)
        return record

    def _resolve_one(self, schema: TableSchema, column: Column, ref: LongValueRef,
                     resolver: Optional[LongValueResolver]) -> Any:
        if resolver is None:
            logger.warning(f"{schema.name}: column '{column.name}' references long value "
                           f"{ref.lid:#x} but the table has no long-value tree")
            return empty_value(column)
        try:
            data = resolver.resolve(ref.lid, ref.width)
        except DanglingLongValue as e:
            logger.warning(f"{schema.name}: column '{column.name}': {e}")
            return empty_value(column)
        if isinstance(ref, CompressedLongValueRef):
            data = decompress(data)
        return convert(column, data)


_default_decoder = RecordDecoder()


def decode(schema: TableSchema, raw: bytes) -> Record:
    """Decode a record with default (small page) tagged layout"""
    return _default_decoder.decode(schema, raw)
