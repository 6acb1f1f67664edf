"""K8s artifact implementation for YAML manifests.

This module provides the K8sArtifact class that represents Kubernetes YAML
manifests as strata artifacts. It implements the Artifact protocol for K8s domain.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from strata.k8s.utils import dump_documents, load_documents


@dataclass(frozen=True)
class K8sArtifact:
    """Kubernetes manifest artifact.

    Represents one or more K8s YAML files, each of which may hold several
    documents separated by ``---``. Implements the Artifact protocol.

    Attributes:
        files: Mapping from file path to YAML content as string.
               Example: ``{"deployment.yaml": "apiVersion: apps/v1\\n..."}``
        environment: Environment tag the manifests were resolved for, if any.
                     Oracles with environment-specific rules use it.

    Example:
        >>> artifact = K8sArtifact(files={"service.yaml": "kind: Service\\n"})
        >>> [d["kind"] for d in artifact.documents()]
        ['Service']
    """
    files: Dict[str, str]
    environment: Optional[str] = None

    def to_serializable(self) -> Dict:
        """Convert artifact to JSON-serializable format.

        Returns:
            Dict with 'files' key containing file path -> content mapping,
            plus 'environment' when set
        """
        result: Dict = {"files": dict(self.files)}
        if self.environment is not None:
            result["environment"] = self.environment
        return result

    def documents(self) -> List[dict]:
        """Parse and return every manifest document, in file order.

        Raises:
            ruamel.yaml.YAMLError: If any file is not valid YAML
        """
        docs: List[dict] = []
        for content in self.files.values():
            docs.extend(load_documents(content))
        return docs

    def write_to_dir(self, dir_path: str, output_filename: Optional[str] = None) -> List[Path]:
        """Write YAML files to directory.

        Creates the directory if it doesn't exist and writes all manifest
        files to disk.

        Args:
            dir_path: Directory path where files should be written
            output_filename: Optional filename to use for output. If provided,
                            renames the first file to this name. If None, preserves
                            original filenames (default: None)

        Returns:
            Paths of the written files
        """
        dir_path_obj = Path(dir_path)
        dir_path_obj.mkdir(parents=True, exist_ok=True)

        written = []
        for i, (rel_path, content) in enumerate(self.files.items()):
            if i == 0 and output_filename is not None:
                file_path = dir_path_obj / output_filename
            else:
                file_path = dir_path_obj / rel_path

            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content, encoding="utf-8")
            written.append(file_path)
        return written

    @classmethod
    def from_documents(
        cls,
        documents: Iterable[dict],
        environment: Optional[str] = None,
        filename: str = "resolved.yaml",
    ) -> "K8sArtifact":
        """Build a single-file artifact from parsed documents."""
        return cls(files={filename: dump_documents(documents)}, environment=environment)

    @classmethod
    def from_file(cls, file_path: str, environment: Optional[str] = None) -> "K8sArtifact":
        """Load K8sArtifact from a YAML file.

        Args:
            file_path: Path to YAML file
            environment: Optional environment tag

        Returns:
            K8sArtifact with the file content

        Example:
            >>> artifact = K8sArtifact.from_file("deployment.yaml")
        """
        path = Path(file_path)
        content = path.read_text(encoding="utf-8")
        return cls(files={path.name: content}, environment=environment)

    @classmethod
    def from_dir(
        cls, dir_path: str, pattern: str = "*.yaml", environment: Optional[str] = None
    ) -> "K8sArtifact":
        """Load K8sArtifact from directory with YAML files.

        Files are read in sorted order so that document order is stable.

        Args:
            dir_path: Directory containing YAML files
            pattern: Glob pattern for files to include (default: ``*.yaml``)
            environment: Optional environment tag

        Returns:
            K8sArtifact with all matching files
        """
        dir_path_obj = Path(dir_path)
        files = {}

        for file_path in sorted(dir_path_obj.glob(pattern)):
            if file_path.is_file():
                rel_path = file_path.relative_to(dir_path_obj)
                files[str(rel_path)] = file_path.read_text(encoding="utf-8")

        return cls(files=files, environment=environment)
