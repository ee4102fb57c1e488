"""Host config file access: tolerant reads, atomic writes, camel/snake key mapping."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable

from loguru import logger

from mspbots.config.schema import Config
from mspbots.utils.exceptions import ConfigWriteError


def get_config_path() -> Path:
    """Get the default host configuration file path."""
    return Path.home() / ".openclaw" / "openclaw.json"


def read_json_file(path: Path) -> dict[str, Any] | None:
    """
    Read a JSON object from disk.

    Returns None when the file is missing, unreadable, not JSON, or not an
    object. Never raises.
    """
    if not path.exists():
        logger.info(f"Config file does not exist: {path}")
        return None
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to read config {path}: {e}")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Config {path} is not a JSON object, ignoring it")
        return None
    return data


def write_json_atomic(path: Path, data: Any) -> None:
    """
    Replace ``path`` with ``data`` serialized as JSON.

    The content goes to a sibling temp file first and is renamed over the
    target, so readers see either the old file or the new one.

    Raises:
        ConfigWriteError: the data could not be serialized, or the temp
            file could not be written or renamed.
            The target is left untouched.
    """
    tmp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except (OSError, ValueError, TypeError) as e:
        # ValueError covers text that cannot be encoded (lone surrogates).
        # TypeError covers values json cannot serialize.
        raise ConfigWriteError(str(path), str(e)) from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.debug(f"Could not remove temp file {tmp_name}")


def load_config(config_path: Path | None = None) -> Config:
    """
    Build the adapter config from the host file plus ``MSPBOTS_*`` env vars.

    A missing file yields defaults. Sections owned by the host runtime are
    ignored.

    Raises:
        ValueError: the file exists but is not valid JSON, not an object,
            or fails validation.
    """
    path = config_path or get_config_path()
    if not path.exists():
        return Config()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("top-level value must be an object")
        return Config(**convert_keys(data))
    except ValueError as e:
        # JSONDecodeError and pydantic's ValidationError are both ValueErrors.
        raise ValueError(
            f"Failed to load config from {path}: {e}. "
            "Fix the file or wait for the next config sync."
        ) from e


def save_config(config: Config, config_path: Path | None = None) -> None:
    """Write the modelled sections back as camelCase JSON, atomically.

    Callers that share the file with the host runtime should merge first.
    """
    data = config.model_dump(exclude_none=True)
    write_json_atomic(config_path or get_config_path(), convert_to_camel(data))


def _rename_keys(data: Any, rename: Callable[[str], str]) -> Any:
    # Account ids under ``accounts`` are user-chosen and kept verbatim.
    if isinstance(data, list):
        return [_rename_keys(item, rename) for item in data]
    if not isinstance(data, dict):
        return data
    out: dict[str, Any] = {}
    for key, value in data.items():
        new_key = rename(key)
        if new_key == "accounts" and isinstance(value, dict):
            out[new_key] = {acc_id: _rename_keys(acc, rename) for acc_id, acc in value.items()}
        else:
            out[new_key] = _rename_keys(value, rename)
    return out


def convert_keys(data: Any) -> Any:
    """camelCase file keys to snake_case model fields."""
    return _rename_keys(data, camel_to_snake)


def convert_to_camel(data: Any) -> Any:
    """snake_case model fields to camelCase file keys."""
    return _rename_keys(data, snake_to_camel)


def camel_to_snake(name: str) -> str:
    return name[:1].lower() + "".join(f"_{c.lower()}" if c.isupper() else c for c in name[1:]) if name else name


def snake_to_camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)
