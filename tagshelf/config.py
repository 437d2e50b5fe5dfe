import json
import logging
import os
from typing import Dict, Optional

CONFIG_PATH = os.environ.get("TAGSHELF_CONFIG", os.path.join(".", "tagshelf_config.json"))
DEFAULT_LOG_LEVEL = "WARNING"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logger = logging.getLogger(__name__)


def load_config(path: Optional[str] = None) -> Dict:
    try:
        with open(path or CONFIG_PATH, "r", encoding="utf-8") as f:
            data = json.load(f)
            return data if isinstance(data, dict) else {}
    except FileNotFoundError:
        return {}
    except (OSError, ValueError) as e:
        logger.warning("ignoring unreadable config %s: %s", path or CONFIG_PATH, e)
        return {}


def save_config(data: Dict, path: Optional[str] = None) -> None:
    with open(path or CONFIG_PATH, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def get_last_repo_path(path: Optional[str] = None) -> Optional[str]:
    val = load_config(path).get("last_repo_path")
    return str(val) if val else None


def set_last_repo_path(repo_path: Optional[str], path: Optional[str] = None) -> None:
    cfg = load_config(path)
    cfg["last_repo_path"] = os.path.abspath(repo_path) if repo_path else None
    save_config(cfg, path)


def get_log_level(path: Optional[str] = None) -> str:
    level = str(load_config(path).get("log_level") or DEFAULT_LOG_LEVEL).upper()
    return level if isinstance(logging.getLevelName(level), int) else DEFAULT_LOG_LEVEL


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(format=LOG_FORMAT)
    logging.getLogger("tagshelf").setLevel(getattr(logging, (level or get_log_level()).upper()))
