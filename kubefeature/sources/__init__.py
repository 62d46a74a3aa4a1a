"""Config Source Store implementations and the feature definition source."""

from kubefeature.sources.base import ConfigSourceStore
from kubefeature.sources.configmap import ConfigMapSourceStore
from kubefeature.sources.definitions import DefinitionFileSource, parse_definition
from kubefeature.sources.memory import InMemoryConfigSourceStore

__all__ = [
    "ConfigMapSourceStore",
    "ConfigSourceStore",
    "DefinitionFileSource",
    "InMemoryConfigSourceStore",
    "parse_definition",
]
