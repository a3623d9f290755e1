"""Measurement report export for Mensura.

Supports a plain-text report (measurement table plus per-image pixel size
and per-vertex coordinates with intensities) and a CSV measurement table.
"""

import csv
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

from loguru import logger

from mensura.core.model import value_in_units
from mensura.version import __version_display__

if TYPE_CHECKING:
    from mensura.core.session import MeasurementSession


class ExportFormat(Enum):
    """Supported export formats."""

    TXT = "txt"
    CSV = "csv"


_RULE = "=" * 43
_THIN_RULE = "-" * 43


def _e(value: float) -> str:
    return f"{value:13.6e}"


def _write_text(session: "MeasurementSession", f: TextIO):
    rows = session.export_measurement_table()
    dumps = session.export_full_dump()

    f.write(f"Data file created by {__version_display__}\n")
    f.write(f"{_RULE}\n")
    f.write(f"Date:                    {datetime.now():%Y-%m-%d %H:%M:%S}\n")
    f.write(f"Number of images:        {len(session.images)}\n")
    f.write(f"Number of Measurements:  {len(rows)}\n")
    f.write("= End of Header ===========================\n\n")

    f.write("= Measurement Table =======================\n")
    f.write(
        f"{'i':>3}, {'j':>3}, {'type':>11}, {'val':>13}, {'unit':>5}, "
        "filename (i = image number, j = measurement number)\n"
    )
    f.write(f"{_THIN_RULE}\n")
    for row in rows:
        f.write(
            f"{row.image:3d}, {row.measurement:3d}, {row.kind:>11}, {_e(row.value_px)}, "
            f"{row.unit:>5}, {row.filename}\n"
        )
    f.write(f"{_RULE}\n\n")

    f.write("= Additional Data =========================\n")
    for i, dump in enumerate(dumps):
        f.write(f"Filename           : {dump.filename}\n")
        f.write(f"Pixelsize          : {_e(dump.pixel_size.units_per_pixel)} {dump.unit}/px\n")
        f.write(f"Calibration Length : {_e(dump.pixel_size.calibrated_length)} {dump.unit}\n")
        f.write(f"Calibration Length : {_e(dump.pixel_size.calibrated_pixels)} px\n")
        for m in dump.measurements:
            f.write(f"Measurement {m.index}: {m.kind}, {_e(m.value_px)} px, {_e(m.value_unit)} {m.unit}\n")
            width = len(m.vertices[0]) - 2 if m.vertices else 0
            channels = ("R", "G", "B") if width == 3 else ("I",) * width
            f.write(", ".join(f"{name:>13}" for name in ("x", "y", *channels)) + "\n")
            for vertex in m.vertices:
                f.write(", ".join(_e(v) for v in vertex) + "\n")
        if i < len(dumps) - 1:
            f.write(f"{_THIN_RULE}\n")
    f.write("= End of File =============================\n")


def _write_csv(session: "MeasurementSession", f: TextIO):
    writer = csv.writer(f)
    writer.writerow(["image", "measurement", "kind", "value_px", "value_unit", "unit", "filename"])
    for row in session.export_measurement_table():
        image = session.images[row.image - 1]
        writer.writerow(
            [
                row.image,
                row.measurement,
                row.kind,
                row.value_px,
                value_in_units(image.measurements[row.measurement - 1], image),
                row.unit,
                row.filename,
            ]
        )


def export_report(session: "MeasurementSession", output_path: Path, fmt: ExportFormat = ExportFormat.TXT) -> Path:
    """Write the session's measurements to ``output_path``."""
    output_path = Path(output_path).with_suffix(f".{fmt.value}")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, "w", encoding="utf-8", newline="") as f:
        if fmt is ExportFormat.CSV:
            _write_csv(session, f)
        else:
            _write_text(session, f)
    logger.info(f"Exported {fmt.value.upper()} report to: {output_path}")
    return output_path
