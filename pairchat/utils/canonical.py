from typing import Any

import orjson


def dumps(frame: Any) -> str:
    # compact, key order preserved; text frames need str
    return orjson.dumps(frame).decode("utf-8")


def loads(raw: str | bytes) -> Any:
    return orjson.loads(raw)


def pair_key(a: str, b: str) -> str:
    """Order-insensitive key for a participant pair.

    Encoded as a JSON array so no separator has to be escaped out of the ids.
    """
    return dumps(sorted((a, b)))
