from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from livescreen.models.enums import ModuleType
from livescreen.models.subtest import Subtest
from livescreen.settings import settings

logger = logging.getLogger(__name__)

ALLOWED_MODULES = {m.value for m in ModuleType}
ALLOWED_MODALITIES = {"expressive", "receptive"}


class CatalogError(Exception):
    """A catalog file is unreadable or malformed."""
    pass


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise CatalogError(f"Cannot read YAML {path}: {e}") from e
    if not isinstance(data, dict):
        raise CatalogError(f"YAML must be a mapping: {path}")
    return data


def discover_subtests(root: Path | None = None) -> List[Path]:
    """All *.yaml / *.yml files under the catalog directory, sorted."""
    root = Path(root) if root else settings.catalog_dir
    if not root.exists():
        return []
    return sorted(p for p in root.rglob("*.y*ml") if p.is_file())


def _validate_meta(meta: Dict[str, Any], path: Path) -> Dict[str, Any]:
    missing = [k for k in ("code", "name", "module_type") if not meta.get(k)]
    if missing:
        raise CatalogError(f"{path}: missing meta fields: {', '.join(missing)}")

    module_type = str(meta["module_type"]).strip()
    if module_type not in ALLOWED_MODULES:
        raise CatalogError(f"{path}: module_type must be one of {sorted(ALLOWED_MODULES)}")

    modality = meta.get("modality")
    if modality is not None and modality not in ALLOWED_MODALITIES:
        raise CatalogError(f"{path}: modality must be one of {sorted(ALLOWED_MODALITIES)}")

    try:
        order_index = int(meta.get("order_index", 0))
    except (TypeError, ValueError) as e:
        raise CatalogError(f"{path}: meta.order_index must be an integer") from e

    grade = meta.get("grade")
    return {
        "id": str(meta["code"]).strip(),
        "name": str(meta["name"]),
        "description": meta.get("description"),
        "module_type": ModuleType(module_type),
        "modality": modality,
        "grade": str(grade) if grade is not None else None,
        "order_index": order_index,
    }


def _validate_items(items: Any, path: Path) -> List[Any]:
    if items is None:
        raise CatalogError(f"{path}: missing 'items' section")
    if not isinstance(items, list):
        raise CatalogError(f"{path}: 'items' must be a list")
    for i, item in enumerate(items):
        if not isinstance(item, (str, dict)):
            raise CatalogError(f"{path}: item {i} must be a string or a mapping")
    return items


def _validate_timing(timing: Any, path: Path) -> Optional[Dict[str, Any]]:
    if timing is None:
        return None
    if not isinstance(timing, dict):
        raise CatalogError(f"{path}: 'timing' must be a mapping")
    duration = timing.get("duration_seconds")
    if duration is not None and (not isinstance(duration, int) or duration <= 0):
        raise CatalogError(f"{path}: timing.duration_seconds must be a positive integer")
    return timing


def import_subtest_file(db: Session, path: Path) -> str:
    """Import one catalog file (upsert by meta.code). Returns the subtest id."""
    data = _load_yaml(path)
    fields = _validate_meta(data.get("meta") or {}, path)
    items = _validate_items(data.get("items"), path)
    timing = _validate_timing(data.get("timing"), path)

    subtest = db.get(Subtest, fields["id"])
    if subtest is None:
        subtest = Subtest(id=fields["id"])
        db.add(subtest)
    for key, value in fields.items():
        setattr(subtest, key, value)
    subtest.stimulus_data = {"items": items}
    subtest.item_count = len(items)
    subtest.timing_config = timing
    subtest.script_prompt = data.get("script_prompt")

    db.commit()
    return subtest.id


def import_all(db: Session, root: Path | None = None, stop_on_error: bool = False) -> Dict[str, Any]:
    """
    Import every catalog file.
    Returns {imported: [ids], errors: {path: error}, root: str, count: int}.
    """
    root = Path(root) if root else settings.catalog_dir
    imported: List[str] = []
    errors: Dict[str, str] = {}

    for p in discover_subtests(root):
        try:
            imported.append(import_subtest_file(db, p))
        except (CatalogError, SQLAlchemyError) as e:
            db.rollback()
            errors[str(p)] = str(e)
            logger.warning("Skipped catalog file %s: %s", p, e)
            if stop_on_error:
                raise

    logger.info("Imported %d subtest(s) from %s", len(imported), root)
    return {"imported": imported, "errors": errors, "root": str(root), "count": len(imported)}


if __name__ == "__main__":
    # python -m livescreen.utils.subtest_loader
    from livescreen.database import Base, SessionLocal, engine
    from livescreen.logging_config import setup_logging
    from livescreen.models import response, session, student, subtest  # noqa: F401

    setup_logging()
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        result = import_all(db)
        logger.info("Import finished: %s", result)
    finally:
        db.close()
