"""Load plugins listed in the environment into a registry."""

from __future__ import annotations

import importlib
import logging
import os
import re
from typing import Any, Dict, Optional

from guildflags.core.plugins.registry import PluginRegistry

logger = logging.getLogger(__name__)


def _parse_plugin_list(raw: str) -> list[str]:
    tokens = [t.strip() for t in re.split(r"[,\s]+", raw or "") if t.strip()]
    # Keep order but de-dupe
    return list(dict.fromkeys(tokens))


def bootstrap_flag_plugins(
    registry: PluginRegistry,
    raw: Optional[str] = None,
    strict: Optional[bool] = None,
) -> Dict[str, Any]:
    """Import plugin modules and let them register into `registry`.

    Environment:
    - GUILD_FLAGS_PLUGINS: comma/space separated plugin list
      - "pkg.module" imports the module
      - "pkg.module:bootstrap" imports the module and calls bootstrap(registry)
    - GUILD_FLAGS_PLUGINS_STRICT: when true, import/call errors raise
    """
    if raw is None:
        raw = os.getenv("GUILD_FLAGS_PLUGINS", "").strip()
    if strict is None:
        strict = os.getenv("GUILD_FLAGS_PLUGINS_STRICT", "false").strip().lower() == "true"

    tokens = _parse_plugin_list(raw)
    loaded: list[str] = []
    errors: list[Dict[str, str]] = []

    for token in tokens:
        module_name = token
        func_name = ""
        if ":" in token:
            module_name, func_name = token.split(":", 1)
            module_name = module_name.strip()
            func_name = func_name.strip()
        try:
            module = importlib.import_module(module_name)
            if func_name:
                func = getattr(module, func_name)
                if not callable(func):
                    raise TypeError(
                        f"Plugin bootstrap target not callable: {module_name}:{func_name}"
                    )
                func(registry)
            loaded.append(token)
        except Exception as exc:  # noqa: BLE001
            errors.append({"plugin": token, "error": f"{type(exc).__name__}: {exc}"})
            logger.error(
                f"Failed to load plugin {token}: {exc}",
                extra={"plugin": token},
            )
            if strict:
                raise

    if tokens:
        logger.info(f"Loaded {len(loaded)}/{len(tokens)} flag plugins")
    return {
        "enabled": bool(tokens),
        "strict": bool(strict),
        "configured": list(tokens),
        "loaded": loaded,
        "errors": errors,
        "registered": [p.plugin_info().sys_name for p in registry.list_plugins()],
    }
