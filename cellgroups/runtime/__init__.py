"""
cellgroups: generated cell groups and scoped owner access.

| Layer                        | Purpose                                         |
<----------------------------- + ----------------------------------------------->
| **Capability lattice**       | kind × access × role interfaces and composites  |
| **Owner primitives**         | one live owner per marker (process or thread)   |
| **Group expander**           | declaration → marker/owner/cell module          |
| **Cluster resolver**         | nested namespaces of groups                     |
| **Scope compiler**           | `owner => cell => pattern { ... }` → Python     |
| **Analysis & manifests**     | graphs, Graphviz, hashed JSON manifests         |
"""

from . import lattice as _lattice
from . import primitives as _primitives
from . import expander as _expander
from . import declarations as _declarations
from . import cluster as _cluster
from . import sir as _sir
from . import frames as _frames
from . import compiler as _compiler
from . import analysis as _analysis
from . import manifest as _manifest
from .cli import main, parse_args

from .lattice import *
from .primitives import *
from .expander import *
from .declarations import *
from .cluster import *
from .sir import *
from .compiler import *
from .analysis import *
from .manifest import *

__all__ = []
for module in (
    _lattice,
    _primitives,
    _expander,
    _declarations,
    _cluster,
    _sir,
    _compiler,
    _analysis,
    _manifest,
):
    __all__.extend(getattr(module, "__all__", []))
__all__ += ["main", "parse_args"]
__all__ = list(dict.fromkeys(__all__))
