"""Declarative deployment documents (YAML).

A document lists deployments to start in order::

    api-version: v1
    deployments:
      - name: my-cluster
        type: cluster
        masters: 3
        replicas: 1
        port-base: 7000

Keys may be written in kebab-case or snake_case.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from ..core.errors import DeploymentDocumentError, FilesystemError
from ..core.log import get_logger
from ..utils.filesystem import atomic_write, ensure_dir, read_text
from .deployment_request import DeploymentRequest, parse_request

logger = get_logger(__name__)

SUPPORTED_API_VERSION = "v1"


@dataclass(frozen=True)
class DeploymentDocument:
    """Parsed document: validated requests in document order."""

    api_version: str
    deployments: List[DeploymentRequest] = field(default_factory=list)
    source: Optional[Path] = None


def _normalize_keys(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {str(key).replace("-", "_"): value for key, value in entry.items()}


def parse_document(text: str, source: Optional[Path] = None) -> DeploymentDocument:
    """Parse YAML text into a DeploymentDocument.

    Raises:
        DeploymentDocumentError: On malformed YAML, an unsupported
            api-version, or an invalid deployment entry
    """
    where = str(source) if source else "<document>"
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise DeploymentDocumentError(
            f"Invalid YAML in {where}: {e}", details={"source": where}
        ) from e

    if not isinstance(data, dict):
        raise DeploymentDocumentError(
            f"{where} must contain a mapping with a 'deployments' list",
            details={"source": where},
        )

    data = _normalize_keys(data)
    api_version = str(data.get("api_version", SUPPORTED_API_VERSION))
    if api_version != SUPPORTED_API_VERSION:
        raise DeploymentDocumentError(
            f"Unsupported api-version '{api_version}' in {where} "
            f"(expected {SUPPORTED_API_VERSION})",
            details={"source": where, "api_version": api_version},
        )

    entries = data.get("deployments")
    if not isinstance(entries, list) or not entries:
        raise DeploymentDocumentError(
            f"{where} must list at least one deployment", details={"source": where}
        )

    requests: List[DeploymentRequest] = []
    for index, entry in enumerate(entries, start=1):
        if not isinstance(entry, dict):
            raise DeploymentDocumentError(
                f"Deployment #{index} in {where} is not a mapping",
                details={"source": where, "index": index},
            )
        entry = _normalize_keys(entry)
        if not entry.get("name"):
            raise DeploymentDocumentError(
                f"Deployment #{index} in {where} has no name",
                details={"source": where, "index": index},
            )
        try:
            requests.append(parse_request(entry))
        except ValidationError as e:
            raise DeploymentDocumentError(
                f"Deployment '{entry['name']}' in {where} is invalid: "
                f"{e.error_count()} error(s)",
                details={
                    "source": where,
                    "index": index,
                    "errors": e.errors(include_url=False),
                },
            ) from e

    names = [request.name for request in requests]
    duplicates = sorted({name for name in names if names.count(name) > 1})
    if duplicates:
        raise DeploymentDocumentError(
            f"Duplicate deployment names in {where}: {', '.join(duplicates)}",
            details={"source": where, "duplicates": duplicates},
        )

    return DeploymentDocument(api_version=api_version, deployments=requests, source=source)


def load_document(path: Path) -> DeploymentDocument:
    """Read and parse a document file."""
    try:
        text = read_text(Path(path))
    except FilesystemError as e:
        raise DeploymentDocumentError(e.message, details={"source": str(path)}) from e
    return parse_document(text, source=Path(path))


_EXAMPLES: Dict[str, str] = {
    "basic.yaml": """\
api-version: v1
deployments:
  - name: my-redis
    type: basic
    port: 6379
    persist: true
    memory: "512m"
    with-insight: true
""",
    "stack.yaml": """\
api-version: v1
deployments:
  - name: my-stack
    type: stack
    port: 6380
    persist: true
    memory: "1g"
    modules: [json, search]
    with-insight: true
    insight-port: 8002
""",
    "cluster.yaml": """\
api-version: v1
deployments:
  - name: my-cluster
    type: cluster
    masters: 3
    replicas: 1
    port-base: 7000
    persist: true
    memory: "256m"
""",
    "sentinel.yaml": """\
api-version: v1
deployments:
  - name: my-sentinel
    type: sentinel
    masters: 1
    replicas: 1
    sentinels: 3
    quorum: 2
    redis-port-base: 6379
    sentinel-port-base: 26379
    memory: "512m"
""",
    "enterprise.yaml": """\
api-version: v1
deployments:
  - name: my-enterprise
    type: enterprise
    nodes: 3
    port-base: 8443
    create-db: mydb
    db-port: 12000
    memory: "4g"
""",
    "multi-deployment.yaml": """\
api-version: v1
deployments:
  - name: cache-redis
    type: basic
    port: 6379
    memory: "256m"

  - name: analytics-stack
    type: stack
    port: 6380
    persist: true
    with-insight: true

  - name: session-cluster
    type: cluster
    masters: 3
    replicas: 1
    port-base: 7000
""",
}


def example_documents() -> Dict[str, str]:
    """Example documents keyed by file name."""
    return dict(_EXAMPLES)


def write_examples(directory: Path) -> List[Path]:
    """Write every example document into ``directory``."""
    target = ensure_dir(Path(directory))
    written = []
    for filename, content in _EXAMPLES.items():
        path = target / filename
        atomic_write(path, content)
        logger.debug("Wrote example %s", path)
        written.append(path)
    return written
