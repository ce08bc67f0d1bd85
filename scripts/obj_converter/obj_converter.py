#!/usr/bin/env python3
"""
obj_converter.py
================

Convert Wavefront OBJ files to GLTF Binary (GLB).

Each OBJ object/group becomes one mesh node under a root group node. Invalid
texture/normal references are replaced by defaults (unless
--strict-references is given) and reported per file.

Usage:
    python3 obj_converter.py \\
        --obj-root assets/source/models \\
        --output-root assets/data/models \\
        --force --verbose \\
        --report assets/reports/obj_report.json
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field, fields as dataclass_fields
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from glb_export import GlbExportError, scene_to_glb
from obj_parser import ObjParseError, ObjParseOptions, parse_obj

PROGRESS_INTERVAL = 500


# ---------------------------------------------------------------------------
# Single file conversion
# ---------------------------------------------------------------------------

@dataclass
class ConversionStats:
    total_found: int = 0
    converted: int = 0
    skipped_no_geometry: int = 0
    skipped_existing: int = 0
    skipped_invalid: int = 0
    defaulted_uvs: int = 0
    defaulted_normals: int = 0
    failed: int = 0
    failures: List[Dict] = field(default_factory=list)


def merge_stats(target: ConversionStats, source: ConversionStats) -> None:
    """Merge *source* into *target* by summing int fields and extending list fields."""
    for f in dataclass_fields(ConversionStats):
        src_val = getattr(source, f.name)
        if isinstance(src_val, int):
            setattr(target, f.name, getattr(target, f.name) + src_val)
        elif isinstance(src_val, list):
            getattr(target, f.name).extend(src_val)


def convert_obj_text(text: str, options: ObjParseOptions, name: Optional[str] = None) -> Tuple[Optional[bytes], Dict[str, List[int]]]:
    """Parse OBJ text and export it as GLB bytes.

    Returns the GLB (None without geometry) and the sorted defaulted
    reference numbers keyed by "vt"/"vn".
    """
    result = parse_obj(text, options)
    if name is not None:
        result.scene.set_name(result.group, name)
    glb_bytes = scene_to_glb(result.scene, result.group)
    defaulted = {
        "vt": sorted(result.default_uvs),
        "vn": sorted(result.default_normals),
    }
    return glb_bytes, defaulted


def convert_single_obj(
    source: Path,
    output_path: Path,
    options: ObjParseOptions,
    force: bool,
    stats: ConversionStats,
) -> None:
    """Convert a single OBJ file to GLB."""
    stats.total_found += 1

    if not force and output_path.exists() and output_path.stat().st_size > 0:
        stats.skipped_existing += 1
        logging.debug("Skipping existing: %s", output_path)
        return

    try:
        text = source.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "read"})
        logging.error("Cannot read %s: %s", source, exc)
        return

    try:
        glb_bytes, defaulted = convert_obj_text(text, options, name=source.stem)
    except ObjParseError as exc:
        stats.skipped_invalid += 1
        stats.failures.append({
            "source": str(source), "error": str(exc), "type": "parse", "line": exc.line_num,
        })
        logging.warning("Parse error for %s: %s", source, exc)
        return
    except GlbExportError as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "export"})
        logging.error("Export error for %s: %s", source, exc)
        return
    except Exception as exc:
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "unexpected"})
        logging.error("Unexpected error converting %s: %s", source, exc)
        return

    if defaulted["vt"]:
        stats.defaulted_uvs += len(defaulted["vt"])
        logging.warning(
            "%s: %d invalid vt reference(s) replaced by UV (0, 0): %s",
            source, len(defaulted["vt"]), defaulted["vt"],
        )
    if defaulted["vn"]:
        stats.defaulted_normals += len(defaulted["vn"])
        logging.warning(
            "%s: %d invalid vn reference(s) replaced by face normals: %s",
            source, len(defaulted["vn"]), defaulted["vn"],
        )

    if glb_bytes is None:
        stats.skipped_no_geometry += 1
        logging.debug("No geometry in %s", source)
        return

    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(glb_bytes)
    stats.converted += 1
    logging.debug("Converted %s -> %s (%d bytes)", source, output_path, len(glb_bytes))


def _obj_convert_worker(
    source: Path,
    output_path: Path,
    options: ObjParseOptions,
    force: bool,
) -> ConversionStats:
    """Worker function for parallel OBJ conversion. Returns local stats."""
    stats = ConversionStats()
    try:
        convert_single_obj(source, output_path, options, force, stats)
    except Exception as exc:  # noqa: BLE001
        stats.failed += 1
        stats.failures.append({"source": str(source), "error": str(exc), "type": "worker"})
        logging.error("OBJ worker error for %s: %s", source, exc)
    return stats


# ---------------------------------------------------------------------------
# Batch conversion
# ---------------------------------------------------------------------------

def discover_obj_files(root: Path) -> List[Path]:
    """Discover all .obj files under root, case-insensitive."""
    result = []
    for dirpath, _dirnames, filenames in os.walk(root):
        for fname in filenames:
            if fname.lower().endswith(".obj"):
                result.append(Path(dirpath) / fname)
    result.sort()
    return result


def _log_progress(done: int, total: int, stats: ConversionStats, start_time: float) -> None:
    logging.info(
        "Progress: %d/%d (%.1f%%) converted=%d skipped=%d failed=%d [%.1fs]",
        done, total, 100.0 * done / total,
        stats.converted,
        stats.skipped_no_geometry + stats.skipped_existing + stats.skipped_invalid,
        stats.failed,
        time.time() - start_time,
    )


def convert_all(
    obj_root: Path,
    output_root: Path,
    options: ObjParseOptions,
    force: bool = False,
    dry_run: bool = False,
    report_path: Optional[Path] = None,
    workers: int = 1,
) -> ConversionStats:
    """Convert all OBJ files found under obj_root."""
    stats = ConversionStats()

    obj_files = discover_obj_files(obj_root)
    total = len(obj_files)
    logging.info("Found %d OBJ files under %s (workers=%d)", total, obj_root, workers)

    jobs: List[Tuple[Path, Path]] = [
        (obj_path, output_root / obj_path.relative_to(obj_root).with_suffix(".glb"))
        for obj_path in obj_files
    ]

    if dry_run:
        for source, out in jobs:
            logging.info("[DRY-RUN] Would convert %s -> %s", source, out)
        stats.total_found = total
        return stats

    start_time = time.time()

    if workers <= 1:
        for idx, (source, out) in enumerate(jobs):
            convert_single_obj(source, out, options, force, stats)
            if (idx + 1) % PROGRESS_INTERVAL == 0 or (idx + 1) == total:
                _log_progress(idx + 1, total, stats, start_time)
    elif jobs:
        completed = 0
        chunksize = max(1, total // (workers * 4))
        with ProcessPoolExecutor(max_workers=workers) as executor:
            futures_iter = executor.map(
                _obj_convert_worker,
                [src for src, _ in jobs],
                [dst for _, dst in jobs],
                [options] * total,
                [force] * total,
                chunksize=chunksize,
            )
            for worker_stats in futures_iter:
                merge_stats(stats, worker_stats)
                completed += 1
                if completed % PROGRESS_INTERVAL == 0 or completed == total:
                    _log_progress(completed, total, stats, start_time)

    logging.info(
        "Conversion complete in %.1fs: %d converted, %d skipped (no_geom=%d, existing=%d, invalid=%d), %d failed",
        time.time() - start_time, stats.converted,
        stats.skipped_no_geometry + stats.skipped_existing + stats.skipped_invalid,
        stats.skipped_no_geometry, stats.skipped_existing, stats.skipped_invalid,
        stats.failed,
    )

    if report_path:
        report_path.parent.mkdir(parents=True, exist_ok=True)
        report = {
            "total_found": stats.total_found,
            "error_on_unsupported_data_types": options.error_on_unsupported_data_types,
            "error_on_invalid_reference_number": options.error_on_invalid_reference_number,
            "converted": stats.converted,
            "skipped_no_geometry": stats.skipped_no_geometry,
            "skipped_existing": stats.skipped_existing,
            "skipped_invalid": stats.skipped_invalid,
            "defaulted_uvs": stats.defaulted_uvs,
            "defaulted_normals": stats.defaulted_normals,
            "failed": stats.failed,
            "failures": stats.failures,
        }
        report_path.write_text(json.dumps(report, indent=2))
        logging.info("Report written to %s", report_path)

    return stats


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------

def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Convert Wavefront OBJ files to GLTF Binary (GLB)."
    )
    parser.add_argument(
        "--obj-root", type=Path, required=True,
        help="Root directory containing OBJ files",
    )
    parser.add_argument(
        "--output-root", type=Path, required=True,
        help="Output directory for converted GLB files",
    )
    parser.add_argument(
        "--strict-references",
        action="store_true",
        help=(
            "Fail a file on invalid vt/vn reference numbers instead of using "
            "default UVs and face normals. Invalid v references always fail."
        ),
    )
    parser.add_argument(
        "--strict-commands",
        action="store_true",
        help="Fail a file on unsupported OBJ commands (usemtl, s, l, ...) instead of ignoring them.",
    )
    parser.add_argument("--force", action="store_true", help="Force reconversion")
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--report", type=Path, default=None,
        help="Path for JSON conversion report",
    )
    parser.add_argument(
        "--workers", type=int, default=os.cpu_count() or 4,
        help="Number of parallel worker processes (default: number of CPUs).",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(message)s",
        datefmt="%H:%M:%S",
    )

    if not args.obj_root.is_dir():
        logging.error("OBJ root directory not found: %s", args.obj_root)
        return 1

    options = ObjParseOptions(
        error_on_unsupported_data_types=args.strict_commands,
        error_on_invalid_reference_number=args.strict_references,
    )
    logging.info(
        "Reference mode: %s",
        "strict" if options.error_on_invalid_reference_number else "lenient (defaults recorded)",
    )

    stats = convert_all(
        obj_root=args.obj_root,
        output_root=args.output_root,
        options=options,
        force=args.force,
        dry_run=args.dry_run,
        report_path=args.report,
        workers=max(1, args.workers),
    )

    if stats.failed > 0 or stats.skipped_invalid > 0:
        logging.warning("%d files failed conversion", stats.failed + stats.skipped_invalid)

    return 0


if __name__ == "__main__":
    sys.exit(main())
