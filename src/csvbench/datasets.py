"""Dataset definitions and a deterministic people-CSV generator."""

from __future__ import annotations

import csv
import logging
import random
from dataclasses import dataclass
from pathlib import Path

from csvbench.util.logging import log_structured_event

LOG = logging.getLogger("csvbench.datasets")

DATASET_COLUMNS = ("Name", "Age", "Location", "Occupation")

_FIRST_NAMES = (
    "Alice",
    "Bob",
    "Carol",
    "Dave",
    "Erin",
    "Frank",
    "Grace",
    "Heidi",
    "Ivan",
    "John",
    "Judy",
    "Mallory",
)
_LOCATIONS = ("New York", "London", "Berlin", "Tokyo", "Sydney", "Toronto", "Paris")
_OCCUPATIONS = ("Engineer", "Designer", "Teacher", "Doctor", "Writer", "Analyst", "Chef")
_MIN_AGE = 18
_MAX_AGE = 70


@dataclass(frozen=True)
class DatasetDefinition:
    """A named dataset size backed by a CSV file.

    ``rows`` is only used when the file has to be generated.
    """

    size: str
    path: Path
    rows: int | None = None

    def exists(self) -> bool:
        return self.path.is_file()


def iter_people_rows(rows: int, *, seed: int = 0):
    rng = random.Random(seed)
    for _ in range(max(0, int(rows))):
        yield {
            "Name": rng.choice(_FIRST_NAMES),
            "Age": str(rng.randint(_MIN_AGE, _MAX_AGE)),
            "Location": rng.choice(_LOCATIONS),
            "Occupation": rng.choice(_OCCUPATIONS),
        }


def generate_dataset(path: str | Path, rows: int, *, seed: int = 0) -> Path:
    """Write ``rows`` people records to ``path`` and return it.

    The same ``rows``/``seed`` pair always produces the same file.
    """
    if int(rows) < 0:
        raise ValueError("rows must be a non-negative integer")
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.DictWriter(handle, fieldnames=list(DATASET_COLUMNS))
        writer.writeheader()
        for row in iter_people_rows(rows, seed=seed):
            writer.writerow(row)
    log_structured_event(LOG, logging.INFO, "dataset_generated", path=str(target), rows=int(rows))
    return target


def ensure_datasets(definitions, *, seed: int = 0) -> list[Path]:
    """Generate every missing dataset file that declares a row count."""
    generated: list[Path] = []
    for definition in definitions:
        if definition.exists():
            continue
        if definition.rows is None:
            log_structured_event(
                LOG,
                logging.WARNING,
                "dataset_missing_without_rows",
                size=definition.size,
                path=str(definition.path),
            )
            continue
        generated.append(generate_dataset(definition.path, definition.rows, seed=seed))
    return generated
