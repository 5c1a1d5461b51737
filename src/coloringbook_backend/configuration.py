from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv
from omegaconf import DictConfig, OmegaConf

CONFIG_PATH = Path(__file__).resolve().parent / "defaults.yaml"


def _as_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


# Environment variable -> (dotted config key, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "AWS_ENDPOINT": ("storage.endpoint_url", str),
    "AWS_REGION": ("storage.region", str),
    "S3_UPLOAD_BUCKET": ("storage.upload_bucket", str),
    "S3_PROCESSED_BUCKET": ("storage.processed_bucket", str),
    "S3_FINAL_BUCKET": ("storage.final_bucket", str),
    "S3_ENSURE_BUCKETS": ("storage.ensure_buckets", _as_bool),
    "IMAGE_FETCH_TIMEOUT": ("resolver.http_timeout", float),
    "PDF_WORKERS": ("jobs.max_workers", int),
    "MIN_IMAGES_REQUIRED": ("jobs.min_images", int),
    "PDF_WORK_DIR": ("paths.work_dir", str),
}


@lru_cache(maxsize=1)
def _load_default_config() -> DictConfig:
    if not CONFIG_PATH.exists():
        raise FileNotFoundError(f"Default config not found at {CONFIG_PATH}")
    return OmegaConf.load(CONFIG_PATH)


def environment_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """
    Collect config overrides from environment variables.

    Empty variables are ignored so that `AWS_ENDPOINT=` in a .env file
    behaves like an unset variable.
    """
    environ = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    for name, (key, convert) in ENV_OVERRIDES.items():
        raw = environ.get(name)
        if raw is None or raw.strip() == "":
            continue
        try:
            overrides[key] = convert(raw)
        except ValueError as exc:
            raise ValueError(f"Invalid value for {name}: {raw!r}") from exc
    return overrides


def make_settings(overrides: Optional[Dict[str, Any]] = None, use_env: bool = True) -> DictConfig:
    """
    Build runtime settings from packaged defaults, environment and overrides.

    Args:
        overrides: Values keyed by dotted path (``"jobs.max_workers"``) or as
            nested mappings; applied last
        use_env: Whether to load ``.env`` and apply environment overrides

    Returns:
        Struct-mode DictConfig; unknown keys raise on access and on merge
    """
    base_container = OmegaConf.to_container(_load_default_config(), resolve=False)
    settings = OmegaConf.create(base_container)
    OmegaConf.set_struct(settings, True)

    layered: Dict[str, Any] = {}
    if use_env:
        load_dotenv()
        layered.update(environment_overrides())
    for key, value in (overrides or {}).items():
        if isinstance(value, Mapping):
            settings = DictConfig(OmegaConf.merge(settings, OmegaConf.create({key: dict(value)})))
        else:
            layered[key] = value

    for key, value in layered.items():
        OmegaConf.update(settings, key, value, merge=True)
    return settings
