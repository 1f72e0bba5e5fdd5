"""
Configuration for the codec.
"""
from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class CodecConfig:
    """
    Module names and resources the environment resolver binds per host.

    Server processes and workers import the model library and the artifact
    codec as named modules. In-page hosts fetch ``codec_resource`` from the
    directory of the executing script and evaluate it.
    """

    library_module: str = "torchserialize.layers"
    codec_module: str = "torchserialize.artifacts"
    worker_library_module: str = "torchserialize.layers"
    worker_codec_module: str = "torchserialize.artifacts"
    codec_resource: str = "artifacts.py"


DEFAULT_CONFIG = CodecConfig()
