import json
import os
from typing import Dict, Any, Optional

from labbooking.core.config import settings
from labbooking.core.logger import logger

PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

def load_lab_catalog(path: Optional[str] = None) -> Dict[str, Any]:
    """
    Loads the lab schedule catalog from a JSON file.
    Raises FileNotFoundError if the catalog is missing.
    Returns: Dict with a "labs" mapping of lab id -> schedule metadata.
    """
    path = path or settings.LAB_CATALOG_PATH
    if not os.path.isabs(path) and not os.path.exists(path):
        path = os.path.join(PROJECT_ROOT, path)
    if not os.path.exists(path):
        logger.critical(f"❌ Lab catalog '{path}' not found! Schedules cannot be resolved.")
        raise FileNotFoundError(f"Lab catalog not found at {path}")

    try:
        with open(path, 'r', encoding='utf-8') as f:
            catalog = json.load(f)
    except json.JSONDecodeError as e:
        logger.critical(f"❌ Invalid JSON in lab catalog: {e}")
        raise ValueError(f"Invalid JSON in lab catalog: {e}")

    labs = catalog.get("labs")
    if not isinstance(labs, dict):
        logger.critical(f"❌ Lab catalog '{path}' has no 'labs' mapping.")
        raise ValueError("Lab catalog must contain a 'labs' object")

    logger.info(f"✅ Lab catalog loaded: {len(labs)} labs")
    return catalog

def get_lab_schedule(catalog: Dict[str, Any], lab_id: str) -> Optional[Dict[str, Any]]:
    """
    Helper to get the raw schedule metadata for a lab.
    Returns: Dict with availableDays/availableHours/unavailableWindows/interval, or None if unknown.
    """
    labs = catalog.get("labs", {})
    return labs.get(str(lab_id))
