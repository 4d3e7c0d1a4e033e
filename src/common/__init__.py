from common.ids import generate_id, short_id
from common.jsonio import append_jsonl, atomic_write_json, iter_jsonl, load_json

__all__ = [
    "generate_id",
    "short_id",
    "load_json",
    "atomic_write_json",
    "append_jsonl",
    "iter_jsonl",
]
