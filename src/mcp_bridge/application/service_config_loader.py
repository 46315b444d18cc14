"""Service definitions loader.

Reads a services document and turns it into validated service definitions.

Expected format (YAML, or the same structure as JSON):
```yaml
services:
  - id: filesystem
    name: Filesystem
    type: stdio
    command: npx
    args: ["-y", "@modelcontextprotocol/server-filesystem", "/data"]
  - id: search
    name: Web Search
    type: sse
    url: http://localhost:8931/sse
    headers:
      Authorization: Bearer ${SEARCH_TOKEN}
```
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from mcp_bridge.domain.models import ServiceConfigurationError, ServiceDefinition

logger = logging.getLogger(__name__)


def parse_service_definitions(document: Any, source: str = "<document>") -> list[ServiceDefinition]:
    """Build definitions from an already-parsed services document.

    Raises:
        ServiceConfigurationError: If the document is malformed, an entry is invalid,
            or two entries share an id
    """
    if document is None:
        return []
    if not isinstance(document, dict) or not isinstance(document.get("services", []), list):
        raise ServiceConfigurationError(f"{source}: expected a mapping with a 'services' list")

    definitions: list[ServiceDefinition] = []
    seen: set[str] = set()
    for index, entry in enumerate(document.get("services") or []):
        if not isinstance(entry, dict):
            raise ServiceConfigurationError(f"{source}: services[{index}] must be a mapping")
        definition = ServiceDefinition.from_dict(entry)
        definition.validate()
        if definition.id in seen:
            raise ServiceConfigurationError(f"{source}: duplicate service id '{definition.id}'", definition.id)
        seen.add(definition.id)
        definitions.append(definition)
    return definitions


def load_service_definitions(path: str | Path) -> list[ServiceDefinition]:
    """Load service definitions from a YAML or JSON file.

    Files ending in ``.json`` are parsed as JSON, anything else as YAML.

    Raises:
        ServiceConfigurationError: If the file is missing, unparsable or invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ServiceConfigurationError(f"Services file not found: {config_path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            if config_path.suffix.lower() == ".json":
                document = json.load(f)
            else:
                document = yaml.safe_load(f)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ServiceConfigurationError(f"Failed to parse services file {config_path}: {e}") from e
    except OSError as e:
        raise ServiceConfigurationError(f"Failed to read services file {config_path}: {e}") from e

    definitions = parse_service_definitions(document, str(config_path))
    logger.info(f"Loaded {len(definitions)} service definition(s) from {config_path}")
    return definitions
