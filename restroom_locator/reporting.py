"""Output reporting helpers."""
from __future__ import annotations

import csv
import json
import os
import tempfile
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, Optional, TextIO

from .models import RestroomCandidate, candidate_to_document

RESULT_FIELDS = [
    "id",
    "name",
    "address",
    "latitude",
    "longitude",
    "category",
    "provenance",
    "rating",
    "review_count",
    "distance_from_user",
    "is_filtered_out",
    "is_gender_neutral",
    "is_baby_friendly",
    "is_dog_friendly",
    "is_wheelchair_accessible",
    "is_free",
    "is_approved",
    "commercial_place_id",
    "submitted_by",
]


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def candidate_to_dict(candidate: RestroomCandidate) -> Dict[str, Any]:
    row = candidate_to_document(candidate)
    row["id"] = candidate.id
    row["distance_from_user"] = round(candidate.distance_from_user, 1)
    row["is_filtered_out"] = candidate.is_filtered_out
    row["provenance"] = candidate.provenance.value
    return row


def write_results_json(path: str, candidates: Iterable[RestroomCandidate]) -> None:
    rows = [candidate_to_dict(c) for c in candidates]
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(rows, f, ensure_ascii=False, indent=2)


def write_results_csv(path: str, candidates: Iterable[RestroomCandidate]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=RESULT_FIELDS, extrasaction="ignore")
        writer.writeheader()
        for candidate in candidates:
            writer.writerow(candidate_to_dict(candidate))


def write_json_object(path: str, payload: Dict[str, Any]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
