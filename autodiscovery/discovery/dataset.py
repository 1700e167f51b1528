"""
Read-only tabular dataset used for statistical evidence
"""

import csv
import logging
import math
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)


class Dataset:
    """
    Column-oriented table.

    Numeric columns are float arrays (missing cells are NaN); every other
    column is an object array of strings.
    """

    def __init__(self, columns: dict[str, np.ndarray], name: str = "dataset"):
        lengths = {len(values) for values in columns.values()}
        if len(lengths) > 1:
            raise ValueError(f"Columns of dataset '{name}' have different lengths: {sorted(lengths)}")
        self.columns = {key: np.asarray(values) for key, values in columns.items()}
        self.name = name

    @classmethod
    def from_csv(cls, path: str | Path) -> "Dataset":
        """Load a CSV file with a header row"""
        path = Path(path)
        with open(path, newline="") as f:
            reader = csv.DictReader(f)
            if not reader.fieldnames:
                raise ValueError(f"CSV file {path} has no header row")
            raw: dict[str, list[str]] = {name: [] for name in reader.fieldnames}
            for row in reader:
                for name in reader.fieldnames:
                    raw[name].append((row.get(name) or "").strip())

        columns = {name: _parse_column(values) for name, values in raw.items()}
        dataset = cls(columns, name=path.stem)
        logger.info(
            f"Loaded dataset '{dataset.name}' with {len(dataset)} rows and "
            f"{len(dataset.columns)} columns ({len(dataset.numeric_columns())} numeric)"
        )
        return dataset

    def __len__(self) -> int:
        if not self.columns:
            return 0
        return len(next(iter(self.columns.values())))

    def __contains__(self, name: str) -> bool:
        return name in self.columns

    def column(self, name: str) -> np.ndarray:
        if name not in self.columns:
            raise KeyError(f"Dataset '{self.name}' has no column '{name}'")
        return self.columns[name]

    def is_numeric(self, name: str) -> bool:
        return np.issubdtype(self.column(name).dtype, np.floating)

    def numeric_columns(self) -> list[str]:
        return [name for name in self.columns if self.is_numeric(name)]

    def describe(self, max_categories: int = 8) -> str:
        """Short schema summary for prompts"""
        lines = [f"Dataset '{self.name}': {len(self)} rows"]
        for name, values in self.columns.items():
            if self.is_numeric(name):
                finite = values[np.isfinite(values)]
                if finite.size:
                    lines.append(
                        f"- {name} (numeric): mean={finite.mean():.4g}, "
                        f"min={finite.min():.4g}, max={finite.max():.4g}"
                    )
                else:
                    lines.append(f"- {name} (numeric): no values")
            else:
                categories = sorted({str(v) for v in values if str(v)})
                shown = ", ".join(categories[:max_categories])
                more = f", ... ({len(categories)} total)" if len(categories) > max_categories else ""
                lines.append(f"- {name} (categorical): {shown}{more}")
        return "\n".join(lines)


def _parse_column(values: list[str]) -> np.ndarray:
    numbers = []
    for value in values:
        if value == "":
            numbers.append(math.nan)
            continue
        try:
            numbers.append(float(value))
        except ValueError:
            return np.array(values, dtype=object)
    if all(math.isnan(n) for n in numbers):
        return np.array(values, dtype=object)
    return np.array(numbers, dtype=float)
