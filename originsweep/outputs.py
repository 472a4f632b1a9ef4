from datetime import UTC, datetime
import json
import logging
from pathlib import Path

from originsweep.schemas import BatchResult


logger = logging.getLogger(__name__)


def complete_result_path(output_dir: str | Path, origin: str) -> Path:
    return Path(output_dir) / f"{origin}_complete.json"


def raw_result_path(output_dir: str | Path, origin: str, when: datetime | None = None) -> Path:
    # e.g. HERO2_smart_analyze_2025-11-07T21-02-08-898Z.json
    stamp = (when or datetime.now(UTC)).strftime("%Y-%m-%dT%H-%M-%S-%f")[:-3]
    return Path(output_dir) / f"{origin}_smart_analyze_{stamp}Z.json"


def processed_path_for(input_path: Path) -> Path:
    return input_path.with_name(f"{input_path.stem}_processed{input_path.suffix or '.json'}")


def read_batch(input_path: Path) -> BatchResult:
    if not input_path.exists():
        raise FileNotFoundError(f"input file not found: {input_path}")

    with input_path.open("r", encoding="utf-8") as infile:
        return BatchResult.from_dict(json.load(infile))


def write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(f"{path.name}.tmp")
    with tmp_path.open("w", encoding="utf-8") as outfile:
        json.dump(payload, outfile, indent=2, ensure_ascii=False)
        outfile.write("\n")
    tmp_path.replace(path)


def save_batch(path: Path, batch: BatchResult) -> str | None:
    """Write ``batch`` to ``path``; a failed write is logged and reported as ``None``."""
    try:
        write_json(path, batch.to_dict())
        logger.info("results saved", extra={"path": str(path), "size_bytes": path.stat().st_size})
    except OSError:
        logger.exception("failed to save results", extra={"path": str(path)})
        return None
    return str(path)
