# sapjuice/catalog.py
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

DEFAULT_MENU_PATH = Path(__file__).resolve().parent / "data" / "juices.json"


@lru_cache(maxsize=8)
def load_menu(path: str = "") -> Dict[str, Any]:
    menu_path = Path(path) if path else DEFAULT_MENU_PATH
    if not menu_path.exists():
        raise FileNotFoundError(f"Menu not found at {menu_path}")

    try:
        data = json.loads(menu_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {menu_path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("items"), list):
        raise ValueError(f"Menu at {menu_path} has no 'items' list")
    return data


def list_items(menu: Dict[str, Any]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for it in menu.get("items") or []:
        if not isinstance(it, dict):
            continue
        iid = str(it.get("id") or "").strip()
        name = str(it.get("name") or "").strip()
        if iid and name:
            out.append(it)
    return out


def find_item(menu: Dict[str, Any], item_id: str) -> Optional[Dict[str, Any]]:
    iid = (item_id or "").strip()
    if not iid:
        return None
    for it in list_items(menu):
        if str(it.get("id")) == iid:
            return it
    return None
