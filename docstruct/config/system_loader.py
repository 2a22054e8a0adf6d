"""
DocStruct — YAML Configuration Loader

Loads:
- models.yaml
- prompts.yaml
- settings.yaml

Environment overrides (also read from .env):
- DOCSTRUCT_PRIMARY_MODEL
- DOCSTRUCT_FALLBACK_MODEL
- OLLAMA_BASE_URL

Usage:
    from docstruct.config.system_loader import get_system_config
"""

import os
import yaml
from dotenv import load_dotenv

load_dotenv()

# -------------------------------------------------
# Base Config Path
# -------------------------------------------------

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


def _load_yaml(filename: str):
    path = os.path.join(BASE_DIR, filename)

    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


# -------------------------------------------------
# Public Config Getters
# -------------------------------------------------

def get_model_config():
    config = _load_yaml("models.yaml")
    vision = config.setdefault("vision", {})

    primary = os.getenv("DOCSTRUCT_PRIMARY_MODEL")
    if primary:
        vision["primary_model"] = primary

    fallback = os.getenv("DOCSTRUCT_FALLBACK_MODEL")
    if fallback:
        vision["fallback_model"] = fallback

    base_url = os.getenv("OLLAMA_BASE_URL")
    if base_url:
        vision["base_url"] = base_url

    return config


def get_prompt_config():
    return _load_yaml("prompts.yaml")


def get_system_config():
    return _load_yaml("settings.yaml")
