"""
Learned State Import/Export

Portable, versioned snapshot of what the brain has learned, for moving
state between processes, environments and teams.

Blob format:
    {
        "version": 1,
        "timestamp": <ms>,
        "experiences": [<experience dict>, ...],
        "domain_weights": {<domain>: <DomainWeights dict>, ...}
    }
"""

import json
import logging
import zipfile
from pathlib import Path
from typing import Dict, Any, Optional

from ..errors import InvalidExperience
from ..knowledge.experience_store import Experience, ExperienceStore, ExperienceFilter, now_ms
from ..knowledge.learning_engine import LearningEngine
from ..knowledge.weight_model import AdaptiveWeightModel

logger = logging.getLogger(__name__)

STATE_VERSION = 1
ZIP_MEMBER = "learned_state.json"


def export_state(store: ExperienceStore, weight_model: AdaptiveWeightModel,
                 domain: Optional[str] = None) -> Dict[str, Any]:
    """Snapshot of the experience log and weights, optionally for one domain"""
    experiences = store.query(ExperienceFilter(domain=domain))
    weights = weight_model.export_state()
    if domain is not None:
        weights = {d: w for d, w in weights.items() if d == domain}
    return {
        "version": STATE_VERSION,
        "timestamp": now_ms(),
        "experiences": [e.to_dict() for e in experiences],
        "domain_weights": weights,
    }


def import_state(blob: Dict[str, Any], learning: LearningEngine, replace: bool = False) -> Dict[str, int]:
    """
    Load a snapshot produced by export_state.

    Experiences are replayed into the store and seed the weight windows;
    the exported weights are then installed as-is so that the result does
    not depend on replay order.

    Raises:
        ValueError: if the blob is not a learned-state snapshot of a known version
    """
    if not isinstance(blob, dict) or "version" not in blob:
        raise ValueError("Not a learned-state blob: missing version")
    try:
        version = int(str(blob["version"]).split(".")[0])
    except ValueError as e:
        raise ValueError(f"Unreadable learned-state version: {blob['version']!r}") from e
    if version != STATE_VERSION:
        raise ValueError(f"Unsupported learned-state version {blob['version']} (expected {STATE_VERSION})")

    if replace:
        learning.store.clear()
        for domain in learning.weight_model.domains():
            learning.weight_model.reset_domain(domain)

    experiences = []
    skipped = 0
    for data in blob.get("experiences") or []:
        try:
            experiences.append(Experience.from_dict(data))
        except (InvalidExperience, KeyError, TypeError, ValueError) as e:
            skipped += 1
            logger.warning(f"[IMPORT] Skipping unreadable experience: {e}")

    imported = learning.import_history(experiences)
    domains = learning.weight_model.import_state(blob.get("domain_weights") or {})

    stats = {
        "experiences_imported": imported,
        "experiences_skipped": skipped + (len(experiences) - imported),
        "domains_imported": domains,
    }
    logger.info(f"[IMPORT] Learned state imported: {stats}")
    return stats


class LearnedStateIO:
    """
    File import and export of learned state.

    Supports:
    - Plain JSON (.json)
    - Compressed archives (.zip)
    """

    def __init__(self, learning: LearningEngine):
        self.learning = learning

    def export_to_file(self, output_path: str, domain: Optional[str] = None) -> Dict[str, Any]:
        """
        Export learned state.

        Args:
            output_path: Output file path (.json or .zip)
            domain: Optional domain to restrict the export to

        Returns:
            Export summary
        """
        blob = export_state(self.learning.store, self.learning.weight_model, domain)
        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)

        if output_file.suffix == ".zip":
            self._save_as_zip(blob, output_file)
        else:
            output_file.write_text(json.dumps(blob, indent=2), encoding="utf-8")

        stats = {
            "experiences": len(blob["experiences"]),
            "domains": len(blob["domain_weights"]),
            "path": str(output_file),
        }
        logger.info(f"[EXPORT] Exported learned state to {output_path}: {stats}")
        return stats

    def import_from_file(self, input_path: str, replace: bool = False) -> Dict[str, int]:
        input_file = Path(input_path)
        if not input_file.exists():
            raise FileNotFoundError(f"Import file not found: {input_path}")

        if input_file.suffix == ".zip":
            blob = self._load_from_zip(input_file)
        else:
            blob = json.loads(input_file.read_text(encoding="utf-8"))
        return import_state(blob, self.learning, replace=replace)

    def _save_as_zip(self, data: Dict[str, Any], output_path: Path):
        with zipfile.ZipFile(output_path, "w", zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(ZIP_MEMBER, json.dumps(data, indent=2))

    def _load_from_zip(self, import_path: Path) -> Dict[str, Any]:
        with zipfile.ZipFile(import_path, "r") as zf:
            with zf.open(ZIP_MEMBER) as f:
                return json.load(f)
