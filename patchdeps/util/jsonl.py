import json
import logging
import os
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from filelock import FileLock
from pydantic import BaseModel

logger = logging.getLogger(__name__)

Record = BaseModel | dict[str, Any]


def _encode(record: Record) -> str:
    if isinstance(record, BaseModel):
        record = record.model_dump(mode="json")
    return json.dumps(record, sort_keys=True, ensure_ascii=False)


def lock_path(path: Path) -> Path:
    return path.with_name(path.name + ".lock")


def append_jsonl(path: Path, records: Record | Iterable[Record]) -> bool:
    """
    Append one record, or a batch of records, to a JSONL run log.

    A batch is written under a single hold of the sidecar `.lock` file, so
    the lines of one pipeline run stay contiguous even when several
    processes share the output directory. Returns False when the write
    fails; a lost log line is reported, not raised.
    """

    path = Path(path)
    batch = [records] if isinstance(records, (BaseModel, dict)) else list(records)
    if not batch:
        return True

    payload = "".join(_encode(record) + "\n" for record in batch).encode("utf-8")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with FileLock(str(lock_path(path))):
            with open(path, "ab") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
    except OSError as e:
        logger.critical("Failed to append %d records to %s: %s", len(batch), path, e)
        return False

    return True


def read_jsonl(path: Path) -> Iterator[dict]:
    """Yield one dict per line; blank, malformed and non-object lines are skipped."""

    with Path(path).open("r", encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError as e:
                logger.warning("Skipping malformed line %d of %s: %s", number, path, e)
                continue
            if not isinstance(record, dict):
                logger.warning("Skipping non-object line %d of %s", number, path)
                continue
            yield record
