from batchrun.lib.state.codecs import decode_states, encode_states, migrate_legacy_document
from batchrun.lib.state.types import STATE_SCHEMA_VERSION

__all__ = ["STATE_SCHEMA_VERSION", "decode_states", "encode_states", "migrate_legacy_document"]
